"""Hook runner — execute one hook as an OS process."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from hookchain.config import DEFAULT_TIMEOUT, HookSpec
from hookchain.errors import LaunchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    """Output of a hook process that ran to completion."""

    exit_code: int
    stdout: bytes = b""
    stderr: str = ""


@runtime_checkable
class Runner(Protocol):
    """Executes a hook with *payload* on stdin.

    Implementations raise ``LaunchError`` when the hook cannot be run to
    completion. A non-zero exit is a result, not an error.
    """

    async def run(self, hook: HookSpec, payload: bytes, *, timeout: float | None = None) -> RunResult: ...


def expand_tilde(path: str) -> str:
    """Replace a leading ``~/`` (or a bare ``~``) with ``$HOME``.

    ``~user/...`` is left alone, as is everything when ``$HOME`` is unset.
    """
    if path != "~" and not path.startswith("~/"):
        return path
    home = os.environ.get("HOME")
    if not home:
        return path
    return home + path[1:]


def build_argv(hook: HookSpec) -> list[str]:
    """Split the command on whitespace and append the configured args.

    Commands whose path contains spaces must put the extra words in ``args``.
    """
    parts = expand_tilde(hook.command).split()
    if not parts:
        raise LaunchError(f"runner: empty command for hook {hook.name!r}")
    return parts + list(hook.args)


class ProcessRunner:
    """Run hooks as subprocesses, capturing stdout and stderr separately."""

    def __init__(self, *, default_timeout: float = DEFAULT_TIMEOUT):
        self.default_timeout = default_timeout

    async def run(self, hook: HookSpec, payload: bytes, *, timeout: float | None = None) -> RunResult:
        argv = build_argv(hook)
        if timeout is None:
            timeout = hook.timeout if hook.timeout is not None else self.default_timeout

        env = None
        if hook.env:
            env = {**os.environ, **hook.env}

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise LaunchError(f"runner: execute hook {hook.name!r}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(payload), timeout)
        except TimeoutError:
            await _kill(proc)
            raise LaunchError(
                f"runner: hook {hook.name!r} timed out after {timeout:g}s",
                timed_out=True,
            ) from None
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        logger.debug("hook %s exited with %s", hook.name, proc.returncode)
        return RunResult(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout,
            stderr=stderr.decode("utf-8", errors="replace"),
        )


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()
