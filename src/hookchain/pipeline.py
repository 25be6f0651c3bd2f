"""Chain execution engine — fold a hook list over one host envelope.

Each hook sees the tool input as accumulated by the hooks before it. A hook
step ends in one of four tagged outcomes:

- ``Continue``: fold on with the (possibly merged) state and any context.
- ``Deny``: policy veto, exit 2.
- ``Ask``: escalate to the user, exit 0 with an ``ask`` decision.
- ``Fatal``: infrastructure failure, surfaced to the host as a deny whose
  reason starts with ``hook-chain: ``; audited as ``error``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from hookchain.audit import (
    MAX_STDERR_LEN,
    Auditor,
    ChainExecution,
    ChainOutcome,
    HookOutcome,
    HookResult,
    extract_tool_detail,
    truncate_stderr,
)
from hookchain.config import DEFAULT_TIMEOUT, HookSpec
from hookchain.envelope import (
    DECISION_ASK,
    DECISION_DENY,
    HookInput,
    HookOutput,
    HookSpecificOutput,
)
from hookchain.errors import HookChainError, LaunchError, MergeError, ProtocolError
from hookchain.merge import NO_VALUE, is_present, json_equal, shallow_merge
from hookchain.otel import get_tracer
from hookchain.runner import Runner

logger = logging.getLogger(__name__)

REASON_PREFIX = "hook-chain: "

EXIT_ALLOW = 0
EXIT_DENY = 2


@dataclass(frozen=True)
class ChainOptions:
    """Explicit engine defaults.

    *deadline* is an absolute time on the running event loop's clock
    (``loop.time()``). Every hook timeout is clamped to what remains of it.
    """

    default_timeout: float = DEFAULT_TIMEOUT
    stderr_limit: int = MAX_STDERR_LEN
    deadline: float | None = None


@dataclass(frozen=True)
class ChainResult:
    exit_code: int
    output: bytes | None = None


# ---------------------------------------------------------------------------
# Step outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Continue:
    state: Any
    context: str
    record: HookResult


@dataclass(frozen=True)
class Deny:
    reason: str
    record: HookResult


@dataclass(frozen=True)
class Ask:
    reason: str
    record: HookResult


@dataclass(frozen=True)
class Fatal:
    reason: str
    record: HookResult


StepOutcome = Continue | Deny | Ask | Fatal


def deny_result(event_name: str, reason: str) -> ChainResult:
    return ChainResult(EXIT_DENY, HookOutput.decision(event_name, DECISION_DENY, reason).encode())


def ask_result(event_name: str, reason: str) -> ChainResult:
    return ChainResult(EXIT_ALLOW, HookOutput.decision(event_name, DECISION_ASK, reason).encode())


def _loop_time() -> float:
    return asyncio.get_running_loop().time()


def _deadline_expired(deadline: float | None) -> bool:
    return deadline is not None and _loop_time() >= deadline


def _effective_timeout(hook: HookSpec, options: ChainOptions) -> float:
    timeout = hook.timeout if hook.timeout is not None else options.default_timeout
    if options.deadline is not None:
        timeout = min(timeout, max(options.deadline - _loop_time(), 0.0))
    return timeout


async def run_step(
    index: int,
    hook: HookSpec,
    hook_input: HookInput,
    state: Any,
    runner: Runner,
    options: ChainOptions,
) -> StepOutcome:
    """Run one hook against the accumulated *state* and classify the result."""
    started = time.monotonic()

    def record(exit_code: int, outcome: HookOutcome, stderr: str = "") -> HookResult:
        return HookResult(
            hook_index=index,
            hook_name=hook.name,
            exit_code=exit_code,
            outcome=outcome,
            duration_ms=int((time.monotonic() - started) * 1000),
            stderr=truncate_stderr(stderr, options.stderr_limit),
        )

    try:
        payload = hook_input.with_tool_input(state).encode()
    except HookChainError as e:
        logger.error("encode input for hook %s: %s", hook.name, e)
        return Fatal(
            f'{REASON_PREFIX}failed to encode input for hook "{hook.name}": {e}',
            record(-1, HookOutcome.ERROR, str(e)),
        )

    if _deadline_expired(options.deadline):
        return Fatal(
            f'{REASON_PREFIX}deadline exceeded before hook "{hook.name}"',
            record(-1, HookOutcome.ERROR, "deadline exceeded"),
        )

    try:
        result = await runner.run(hook, payload, timeout=_effective_timeout(hook, options))
    except LaunchError as e:
        logger.warning("runner error for hook %s: %s", hook.name, e)
        if e.timed_out and _deadline_expired(options.deadline):
            return Fatal(
                f'{REASON_PREFIX}deadline exceeded while running hook "{hook.name}"',
                record(-1, HookOutcome.ERROR, str(e)),
            )
        if hook.skips_on_error:
            logger.warning("skipping hook %s due to on_error=skip", hook.name)
            return Continue(state, "", record(-1, HookOutcome.SKIP, str(e)))
        return Fatal(
            f'{REASON_PREFIX}hook "{hook.name}" failed: {e}',
            record(-1, HookOutcome.ERROR, str(e)),
        )

    stderr = result.stderr.strip()

    # Exit 2 is a hard veto, on_error never applies.
    if result.exit_code == 2:
        logger.info("hook %s denied (exit 2): %s", hook.name, stderr)
        reason = stderr or f'hook "{hook.name}" denied (exit 2)'
        return Deny(reason, record(2, HookOutcome.DENY, result.stderr))

    if result.exit_code != 0:
        logger.warning("hook %s exited %d: %s", hook.name, result.exit_code, stderr)
        if hook.skips_on_error:
            logger.warning("skipping hook %s due to on_error=skip", hook.name)
            return Continue(state, "", record(result.exit_code, HookOutcome.SKIP, result.stderr))
        reason = stderr or f'hook "{hook.name}" failed (exit {result.exit_code})'
        return Deny(reason, record(result.exit_code, HookOutcome.DENY, result.stderr))

    stdout = result.stdout.strip()
    if not stdout:
        logger.debug("hook %s passthrough (empty stdout)", hook.name)
        return Continue(state, "", record(0, HookOutcome.PASS))

    try:
        output = HookOutput.decode(stdout)
    except ProtocolError as e:
        logger.warning("hook %s returned unparsable output: %s", hook.name, e)
        if hook.skips_on_error:
            return Continue(state, "", record(0, HookOutcome.SKIP, str(e)))
        return Fatal(
            f'{REASON_PREFIX}hook "{hook.name}" returned invalid JSON: {e}',
            record(0, HookOutcome.ERROR, str(e)),
        )

    hso = output.hook_specific_output
    if hso.permission_decision == DECISION_DENY:
        logger.info("hook %s denied: %s", hook.name, hso.permission_decision_reason)
        return Deny(hso.permission_decision_reason, record(0, HookOutcome.DENY))
    if hso.permission_decision == DECISION_ASK:
        logger.info("hook %s asked: %s", hook.name, hso.permission_decision_reason)
        return Ask(hso.permission_decision_reason, record(0, HookOutcome.ASK))

    outcome = HookOutcome.PASS
    merged = state
    if is_present(hso.updated_input):
        try:
            merged = shallow_merge(state, hso.updated_input)
        except MergeError as e:
            logger.error("merge updatedInput from hook %s: %s", hook.name, e)
            return Fatal(
                f'{REASON_PREFIX}failed to merge updatedInput from hook "{hook.name}": {e}',
                record(0, HookOutcome.ERROR, str(e)),
            )
        outcome = HookOutcome.MERGE

    if hso.additional_context and outcome == HookOutcome.PASS:
        outcome = HookOutcome.CONTEXT

    return Continue(merged, hso.additional_context, record(0, outcome))


async def _record_audit(
    auditor: Auditor | None,
    hook_input: HookInput,
    chain_len: int,
    outcome: ChainOutcome,
    reason: str,
    started: float,
    records: list[HookResult],
) -> None:
    if auditor is None:
        return
    entry = ChainExecution(
        event_name=hook_input.hook_event_name,
        tool_name=hook_input.tool_name,
        tool_detail=extract_tool_detail(hook_input.tool_name, hook_input.tool_input),
        chain_len=chain_len,
        outcome=outcome,
        reason=reason,
        duration_ms=int((time.monotonic() - started) * 1000),
        session_id=hook_input.session_id,
        hooks=records,
    )
    try:
        await auditor.record_chain(entry)
    except Exception as exc:
        logger.warning("audit record failed: %s", exc)


async def _fold(
    hook_input: HookInput,
    hooks: Sequence[HookSpec],
    runner: Runner,
    options: ChainOptions,
    records: list[HookResult],
    tracer: Any,
) -> tuple[ChainResult, ChainOutcome, str]:
    event = hook_input.hook_event_name
    original = hook_input.tool_input
    state = original
    context: list[str] = []

    for index, hook in enumerate(hooks):
        logger.debug("running hook %d: %s", index, hook.name)
        with tracer.start_as_current_span("hook_chain.hook") as span:
            span.set_attribute("hook_chain.hook.index", index)
            span.set_attribute("hook_chain.hook.name", hook.name)
            step = await run_step(index, hook, hook_input, state, runner, options)
            span.set_attribute("hook_chain.hook.outcome", str(step.record.outcome))
            span.set_attribute("hook_chain.hook.exit_code", step.record.exit_code)
        records.append(step.record)

        if isinstance(step, Deny):
            return deny_result(event, step.reason), ChainOutcome.DENY, step.reason
        if isinstance(step, Ask):
            return ask_result(event, step.reason), ChainOutcome.ASK, step.reason
        if isinstance(step, Fatal):
            return deny_result(event, step.reason), ChainOutcome.ERROR, step.reason

        state = step.state
        if step.context:
            context.append(step.context)

    changed = not json_equal(state, original)
    if not changed and not context:
        logger.debug("all hooks passed through, no changes")
        return ChainResult(EXIT_ALLOW), ChainOutcome.ALLOW, ""

    output = HookOutput(
        hook_specific_output=HookSpecificOutput(
            hook_event_name=event,
            updated_input=state if changed else NO_VALUE,
            additional_context="\n".join(context),
        )
    )
    try:
        body = output.encode()
    except (TypeError, ValueError) as e:
        reason = f"{REASON_PREFIX}failed to encode final output: {e}"
        return deny_result(event, reason), ChainOutcome.ERROR, reason
    return ChainResult(EXIT_ALLOW, body), ChainOutcome.ALLOW, ""


async def run_chain(
    hook_input: HookInput,
    hooks: Sequence[HookSpec],
    runner: Runner,
    auditor: Auditor | None = None,
    *,
    options: ChainOptions | None = None,
) -> ChainResult:
    """Execute *hooks* in order against *hook_input*.

    Exactly one audit record is attempted per run, including runs with no
    hooks. Auditor failures are logged and never change the result.

    If the calling task is cancelled the in-flight hook is killed, an
    ``error`` record is written and ``CancelledError`` propagates.
    """
    options = options or ChainOptions()
    started = time.monotonic()
    records: list[HookResult] = []
    tracer = get_tracer("hookchain.pipeline")

    with tracer.start_as_current_span("hook_chain.run") as span:
        span.set_attribute("hook_chain.event", hook_input.hook_event_name)
        span.set_attribute("hook_chain.tool", hook_input.tool_name)
        span.set_attribute("hook_chain.chain_len", len(hooks))
        try:
            result, outcome, reason = await _fold(hook_input, hooks, runner, options, records, tracer)
        except asyncio.CancelledError:
            span.set_attribute("hook_chain.outcome", str(ChainOutcome.ERROR))
            await _record_audit(
                auditor,
                hook_input,
                len(hooks),
                ChainOutcome.ERROR,
                f"{REASON_PREFIX}run cancelled",
                started,
                records,
            )
            raise
        span.set_attribute("hook_chain.outcome", str(outcome))
        span.set_attribute("hook_chain.exit_code", result.exit_code)

    await _record_audit(auditor, hook_input, len(hooks), outcome, reason, started, records)
    return result
