"""hook-chain — run several host policy hooks as one."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

try:
    __version__ = _pkg_version("hook-chain")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0-dev"

from hookchain.audit import (
    Auditor,
    ChainExecution,
    ChainOutcome,
    HookOutcome,
    HookResult,
    JsonlAuditor,
    MultiAuditor,
    RedactionPolicy,
)
from hookchain.audit_store import SQLiteAuditor
from hookchain.config import (
    ChainConfig,
    ChainEntry,
    HookSpec,
    load_config,
    load_config_file,
    load_config_string,
)
from hookchain.envelope import HookInput, HookOutput, HookSpecificOutput
from hookchain.errors import (
    HookChainConfigError,
    HookChainError,
    LaunchError,
    MergeError,
    ParseError,
    ProtocolError,
)
from hookchain.merge import NO_VALUE, json_equal, shallow_merge
from hookchain.otel import configure_otel, get_tracer, has_otel
from hookchain.pipeline import ChainOptions, ChainResult, run_chain
from hookchain.resolver import resolve_chain
from hookchain.runner import ProcessRunner, Runner, RunResult

__all__ = [
    "__version__",
    "Auditor",
    "ChainConfig",
    "ChainEntry",
    "ChainExecution",
    "ChainOptions",
    "ChainOutcome",
    "ChainResult",
    "HookChainConfigError",
    "HookChainError",
    "HookInput",
    "HookOutcome",
    "HookOutput",
    "HookResult",
    "HookSpec",
    "HookSpecificOutput",
    "JsonlAuditor",
    "LaunchError",
    "MergeError",
    "MultiAuditor",
    "NO_VALUE",
    "ParseError",
    "ProcessRunner",
    "ProtocolError",
    "RedactionPolicy",
    "RunResult",
    "Runner",
    "SQLiteAuditor",
    "configure_otel",
    "get_tracer",
    "has_otel",
    "json_equal",
    "load_config",
    "load_config_file",
    "load_config_string",
    "resolve_chain",
    "run_chain",
    "shallow_merge",
]
