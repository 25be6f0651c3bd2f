"""hook-chain CLI — run a chain from stdin, inspect configuration and the audit log."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import sqlite3
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from hookchain import otel
from hookchain.audit import Auditor, ChainExecution, JsonlAuditor, MultiAuditor
from hookchain.audit_store import SQLiteAuditor, connect, get_chain, list_chains, prune, stats, tail
from hookchain.config import (
    ChainConfig,
    HookSpec,
    audit_enabled,
    default_db_path,
    load_config,
    parse_duration,
)
from hookchain.envelope import DECISION_DENY, HookInput, HookOutput
from hookchain.errors import HookChainConfigError, ParseError
from hookchain.pipeline import EXIT_DENY, ChainResult, run_chain
from hookchain.rotation import RotationConfig, list_archives, maybe_rotate
from hookchain.runner import ProcessRunner, expand_tilde

_console = Console(highlight=False)
_err_console = Console(stderr=True, highlight=False)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging() -> None:
    """Log to stderr; stdout carries the protocol body only."""
    level = logging.DEBUG if os.environ.get("HOOK_CHAIN_DEBUG") == "1" else logging.WARNING
    logging.basicConfig(stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("hookchain").setLevel(level)


def _write_stdout(data: bytes) -> None:
    stream = click.get_binary_stream("stdout")
    try:
        stream.write(data)
        stream.flush()
    except OSError as e:
        logger.error("failed to write output: %s", e)


def _write_deny(reason: str) -> None:
    """Deny body for failures that happen before the chain can run."""
    _write_stdout(HookOutput.decision("", DECISION_DENY, reason).encode())


def _audit_db_path(cfg: ChainConfig) -> Path:
    if cfg.audit.db_path:
        return Path(expand_tilde(cfg.audit.db_path))
    return default_db_path()


def _open_auditor(cfg: ChainConfig) -> tuple[Auditor | None, SQLiteAuditor | None]:
    """Open the configured auditors. Failures are logged, never fatal."""
    if not audit_enabled(cfg):
        return None, None

    auditors: list[Auditor] = []
    store: SQLiteAuditor | None = None
    db_path = _audit_db_path(cfg)
    try:
        store = SQLiteAuditor.open(db_path)
        auditors.append(store)
    except (sqlite3.Error, OSError) as e:
        logger.warning("failed to open audit db %s, continuing without audit: %s", db_path, e)

    if cfg.audit.jsonl_path:
        auditors.append(JsonlAuditor(expand_tilde(cfg.audit.jsonl_path)))

    if not auditors:
        return None, None
    if len(auditors) == 1:
        return auditors[0], store
    return MultiAuditor(auditors), store


def _run_hooks(hook_input: HookInput, hooks: list[HookSpec], cfg: ChainConfig) -> int:
    from hookchain import __version__

    otel.configure_from_config(cfg.otel, version=__version__)
    auditor, store = _open_auditor(cfg)
    try:
        try:
            result: ChainResult = asyncio.run(run_chain(hook_input, hooks, ProcessRunner(), auditor))
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.error("chain run cancelled")
            _write_deny("hook-chain: run cancelled")
            return EXIT_DENY

        if result.output:
            _write_stdout(result.output)

        if store is not None and store.path is not None:
            maybe_rotate(store.conn, RotationConfig.for_db(store.path, cfg.audit.retention))
        return result.exit_code
    finally:
        if auditor is not None:
            asyncio.run(auditor.close())
        otel.shutdown()


def _run_stdin() -> int:
    try:
        data = click.get_binary_stream("stdin").read()
    except OSError as e:
        logger.error("failed to read stdin: %s", e)
        _write_deny("hook-chain: failed to read stdin")
        return EXIT_DENY

    if not data:
        logger.debug("empty stdin, passthrough")
        return 0

    try:
        hook_input = HookInput.decode(data)
    except ParseError as e:
        logger.error("failed to parse stdin: %s", e)
        _write_deny("hook-chain: failed to parse hook input")
        return EXIT_DENY

    try:
        cfg = load_config()
    except HookChainConfigError as e:
        _err_console.print(f"[red]hook-chain: config error: {escape(str(e))}[/red]")
        return EXIT_DENY

    hooks = cfg.resolve(hook_input.hook_event_name, hook_input.tool_name)
    if not hooks:
        logger.debug(
            "no matching chain, passthrough (event=%s tool=%s)",
            hook_input.hook_event_name,
            hook_input.tool_name,
        )
        return 0

    logger.debug("resolved %d hook(s) for %s/%s", len(hooks), hook_input.hook_event_name, hook_input.tool_name)
    return _run_hooks(hook_input, hooks, cfg)


def _format_timeout(hook: HookSpec) -> str:
    if hook.timeout is None:
        return "30s (default)"
    return f"{hook.timeout:g}s"


def _command_status(hook: HookSpec) -> tuple[bool, str]:
    parts = expand_tilde(hook.command).split()
    if not parts:
        return False, "EMPTY COMMAND"
    if shutil.which(parts[0]) is None:
        return False, f"NOT FOUND: {parts[0]}"
    return True, "OK"


def _print_hook(index: int, hook: HookSpec, status: str | None = None) -> None:
    line = (
        f"  Hook {index}: name={escape(hook.name)} command={escape(json.dumps(hook.command))} "
        f"timeout={_format_timeout(hook)} on_error={hook.on_error}"
    )
    if hook.args:
        line += f" args={escape(json.dumps(list(hook.args)))}"
    if status is not None:
        style = "green" if status == "OK" else "red"
        line += f" [{style}]\\[{escape(status)}][/{style}]"
    _console.print(line)


def _load_config_or_exit(code: int) -> ChainConfig:
    try:
        return load_config()
    except HookChainConfigError as e:
        _err_console.print(f"[red]hook-chain: config error: {escape(str(e))}[/red]")
        sys.exit(code)


def _truncate(text: str, limit: int = 40) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _format_size(size: int) -> str:
    kb = 1024
    mb = kb * 1024
    if size >= mb:
        return f"{size / mb:.1f}MB"
    if size >= kb:
        return f"{size / kb:.1f}KB"
    return f"{size}B"


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


_OUTCOME_STYLES = {"allow": "green", "deny": "red", "ask": "yellow", "error": "magenta"}


def _print_chain_table(chains: list[ChainExecution], db_path: Path) -> None:
    table = Table(show_header=True)
    table.add_column("ID", justify="right")
    table.add_column("Timestamp")
    table.add_column("Event")
    table.add_column("Tool")
    table.add_column("Detail")
    table.add_column("Hooks", justify="right")
    table.add_column("Outcome")
    table.add_column("Reason")
    table.add_column("Duration", justify="right")

    has_reasoned_non_allow = False
    for c in chains:
        if c.outcome != "allow" and c.reason:
            has_reasoned_non_allow = True
        style = _OUTCOME_STYLES.get(str(c.outcome), "white")
        table.add_row(
            str(c.id),
            c.timestamp.isoformat(timespec="seconds"),
            escape(c.event_name),
            escape(c.tool_name),
            escape(_truncate(c.tool_detail)),
            str(c.chain_len),
            f"[{style}]{c.outcome}[/{style}]",
            escape(_truncate(c.reason)),
            f"{c.duration_ms}ms",
        )

    _console.print(table)

    if has_reasoned_non_allow:
        _err_console.print(
            "\nTip: to see full denial reasons, run:\n"
            f"  sqlite3 {escape(str(db_path))} "
            f"\"SELECT id, reason FROM chain_executions WHERE outcome != 'allow' ORDER BY id DESC LIMIT {len(chains)}\""
        )


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """hook-chain — run several hooks as a single host hook.

    Without a subcommand, reads one hook envelope from stdin, runs the
    matching chain and writes the combined decision to stdout.

    Exit code 0: allow or ask.
    Exit code 2: deny.
    """
    _setup_logging()
    if ctx.invoked_subcommand is None:
        sys.exit(_run_stdin())


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command()
def version() -> None:
    """Show the installed hook-chain version."""
    from hookchain import __version__

    click.echo(f"hook-chain {__version__}")


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


@cli.command()
def validate() -> None:
    """Validate the configuration and check that hook commands exist."""
    cfg = _load_config_or_exit(1)

    if cfg.source:
        _console.print(f"Config: {escape(cfg.source)}")
    if not cfg.chains:
        _console.print("No chains configured.")
        sys.exit(0)

    has_issues = False
    for i, chain in enumerate(cfg.chains, 1):
        tools = ", ".join(chain.tools)
        _console.print(f"[bold]Chain {i}:[/bold] event={escape(chain.event)} tools=\\[{escape(tools)}]")
        for j, hook in enumerate(chain.hooks, 1):
            ok, status = _command_status(hook)
            if not ok:
                has_issues = True
            _print_hook(j, hook, status)

    sys.exit(1 if has_issues else 0)


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--event", required=True, help="Hook event name, e.g. PreToolUse.")
@click.option("--tool", required=True, help="Tool name, e.g. Bash.")
@click.option("--json", "json_output", is_flag=True, default=False, help="Output as JSON.")
def resolve(event: str, tool: str, json_output: bool) -> None:
    """Dry-run chain resolution: show which hooks would run."""
    cfg = _load_config_or_exit(1)
    hooks = cfg.resolve(event, tool)

    if json_output:
        _print_json(
            [
                {
                    "name": h.name,
                    "command": h.command,
                    "args": list(h.args),
                    "timeout": h.timeout,
                    "on_error": h.on_error,
                }
                for h in hooks
            ]
        )
        return

    if not hooks:
        _console.print(f"No chain matches event={escape(event)} tool={escape(tool)} (passthrough).")
        return

    _console.print(f"[bold]{len(hooks)} hook(s)[/bold] for event={escape(event)} tool={escape(tool)}:")
    for i, hook in enumerate(hooks, 1):
        _print_hook(i, hook)


# ---------------------------------------------------------------------------
# audit
# ---------------------------------------------------------------------------


def _db_path(ctx: click.Context) -> Path:
    db = ctx.obj.get("db") if ctx.obj else None
    return Path(db) if db else default_db_path()


def _open_readonly(ctx: click.Context) -> sqlite3.Connection:
    path = _db_path(ctx)
    if not path.exists():
        _err_console.print(f"[red]audit database not found at {escape(str(path))} (is auditing enabled?)[/red]")
        sys.exit(1)
    try:
        return connect(path)
    except sqlite3.Error as e:
        _err_console.print(f"[red]open audit db {escape(str(path))}: {escape(str(e))}[/red]")
        sys.exit(1)


@cli.group()
@click.option("--db", default=None, type=click.Path(), help="Path to the audit database (default: auto-detected).")
@click.pass_context
def audit(ctx: click.Context, db: str | None) -> None:
    """Query the audit log."""
    ctx.ensure_object(dict)
    ctx.obj["db"] = db


@audit.command("list")
@click.option("--limit", default=20, show_default=True, help="Maximum number of entries.")
@click.option("--offset", default=0, show_default=True, help="Skip N entries.")
@click.option("--event", default=None, help="Filter by event name.")
@click.option("--outcome", default=None, help="Filter by outcome (allow, deny, ask, error).")
@click.option("--json", "json_output", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def audit_list(
    ctx: click.Context,
    limit: int,
    offset: int,
    event: str | None,
    outcome: str | None,
    json_output: bool,
) -> None:
    """List chain executions, newest first."""
    conn = _open_readonly(ctx)
    try:
        chains = list_chains(conn, limit=limit, offset=offset, event=event, outcome=outcome)
    finally:
        conn.close()

    if json_output:
        _print_json([c.to_dict() for c in chains])
        return
    _print_chain_table(chains, _db_path(ctx))


@audit.command("show")
@click.argument("chain_id", type=int)
@click.option("--json", "json_output", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def audit_show(ctx: click.Context, chain_id: int, json_output: bool) -> None:
    """Show one chain execution with its hook results."""
    conn = _open_readonly(ctx)
    try:
        chain = get_chain(conn, chain_id)
    finally:
        conn.close()

    if chain is None:
        _err_console.print(f"[red]chain {chain_id} not found[/red]")
        sys.exit(1)

    if json_output:
        _print_json(chain.to_dict())
        return

    _console.print(f"[bold]Chain #{chain.id}[/bold]")
    _console.print(f"  Timestamp:  {chain.timestamp.isoformat(timespec='seconds')}")
    _console.print(f"  Event:      {escape(chain.event_name)}")
    _console.print(f"  Tool:       {escape(chain.tool_name)}")
    if chain.tool_detail:
        _console.print(f"  Detail:     {escape(chain.tool_detail)}")
    _console.print(f"  Chain Len:  {chain.chain_len}")
    _console.print(f"  Outcome:    {chain.outcome}")
    _console.print(f"  Reason:     {escape(chain.reason)}")
    _console.print(f"  Duration:   {chain.duration_ms}ms")
    _console.print(f"  Session:    {escape(chain.session_id)}")

    if chain.hooks:
        table = Table(title="Hook Results", show_header=True)
        table.add_column("Idx", justify="right")
        table.add_column("Name")
        table.add_column("Exit", justify="right")
        table.add_column("Outcome")
        table.add_column("Duration", justify="right")
        table.add_column("Stderr")
        for h in chain.hooks:
            table.add_row(
                str(h.hook_index),
                escape(h.hook_name),
                str(h.exit_code),
                str(h.outcome),
                f"{h.duration_ms}ms",
                escape(_truncate(h.stderr, 60)),
            )
        _console.print(table)


@audit.command("tail")
@click.option("-n", "count", default=10, show_default=True, help="Number of entries.")
@click.option("--json", "json_output", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def audit_tail(ctx: click.Context, count: int, json_output: bool) -> None:
    """Show the last N chain executions."""
    conn = _open_readonly(ctx)
    try:
        chains = tail(conn, count)
    finally:
        conn.close()

    if json_output:
        _print_json([c.to_dict() for c in chains])
        return
    _print_chain_table(chains, _db_path(ctx))


@audit.command("prune")
@click.option("--older-than", required=True, help="Delete entries older than this duration (e.g. 7d, 24h).")
@click.pass_context
def audit_prune(ctx: click.Context, older_than: str) -> None:
    """Delete old audit entries."""
    try:
        seconds = parse_duration(older_than)
    except HookChainConfigError as e:
        _err_console.print(f"[red]invalid --older-than: {escape(str(e))}[/red]")
        sys.exit(2)

    path = _db_path(ctx)
    try:
        store = SQLiteAuditor.open(path)
    except (sqlite3.Error, OSError) as e:
        _err_console.print(f"[red]open audit db {escape(str(path))}: {escape(str(e))}[/red]")
        sys.exit(1)
    try:
        count = prune(store.conn, seconds)
    finally:
        store.conn.close()

    _console.print(f"Pruned {count} chain execution(s).")


@audit.command("stats")
@click.option("--json", "json_output", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def audit_stats(ctx: click.Context, json_output: bool) -> None:
    """Show audit statistics."""
    conn = _open_readonly(ctx)
    try:
        result = stats(conn)
    finally:
        conn.close()

    if json_output:
        _print_json(
            {
                "total_chains": result.total_chains,
                "count_by_outcome": result.count_by_outcome,
                "avg_duration_ms": result.avg_duration_ms,
                "oldest_entry": result.oldest_entry.isoformat() if result.oldest_entry else None,
                "newest_entry": result.newest_entry.isoformat() if result.newest_entry else None,
            }
        )
        return

    _console.print(f"Total chains:   {result.total_chains}")
    _console.print(f"Avg duration:   {result.avg_duration_ms:.1f}ms")
    if result.total_chains > 0 and result.oldest_entry and result.newest_entry:
        _console.print(f"Oldest entry:   {result.oldest_entry.isoformat(timespec='seconds')}")
        _console.print(f"Newest entry:   {result.newest_entry.isoformat(timespec='seconds')}")
    if result.count_by_outcome:
        _console.print("\n[bold]By outcome:[/bold]")
        for outcome, count in sorted(result.count_by_outcome.items()):
            _console.print(f"  {outcome:<10} {count}")


@audit.command("db-path")
@click.pass_context
def audit_db_path(ctx: click.Context) -> None:
    """Print the audit database path."""
    click.echo(str(_db_path(ctx)))


@audit.command("archives")
@click.option("--json", "json_output", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def audit_archives(ctx: click.Context, json_output: bool) -> None:
    """List audit archive files, newest first."""
    archive_dir = RotationConfig.for_db(_db_path(ctx)).archive_dir
    archives = list_archives(archive_dir)

    if json_output:
        _print_json(
            [
                {"path": str(a.path), "name": a.name, "size": a.size, "mtime": a.mtime.isoformat()}
                for a in archives
            ]
        )
        return

    if not archives:
        _console.print("No archives found.")
        return

    table = Table(show_header=True)
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Date")
    for a in archives:
        table.add_row(escape(a.name), _format_size(a.size), a.mtime.isoformat(timespec="seconds"))
    _console.print(table)
