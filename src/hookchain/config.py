"""Configuration loader — parse YAML, validate against JSON Schema, build chains."""

from __future__ import annotations

import importlib.resources as _resources
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from hookchain.errors import HookChainConfigError

logger = logging.getLogger(__name__)

MAX_CONFIG_SIZE = 1_048_576  # 1 MB

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETENTION = 7 * 24 * 3600.0

ON_ERROR_DENY = "deny"
ON_ERROR_SKIP = "skip"

# Lazy-loaded schema singleton
_schema_cache: dict | None = None


def _get_schema() -> dict:
    """Load and cache the JSON Schema for validation."""
    global _schema_cache  # noqa: PLW0603
    if _schema_cache is None:
        schema_text = _resources.files("hookchain").joinpath("hook-chain-v1.schema.json").read_text(encoding="utf-8")
        _schema_cache = json.loads(schema_text)
    return _schema_cache


@dataclass(frozen=True)
class HookSpec:
    """A single hook command to execute."""

    name: str
    command: str
    args: tuple[str, ...] = ()
    timeout: float | None = None  # seconds; None = engine default
    env: dict[str, str] = field(default_factory=dict)
    on_error: str = ON_ERROR_DENY

    @property
    def skips_on_error(self) -> bool:
        return self.on_error == ON_ERROR_SKIP


@dataclass(frozen=True)
class ChainEntry:
    """Maps an event and a set of tool names to an ordered hook list."""

    event: str
    tools: tuple[str, ...] = ()
    hooks: tuple[HookSpec, ...] = ()


@dataclass(frozen=True)
class AuditConfig:
    disabled: bool = False
    db_path: str | None = None
    retention: float = DEFAULT_RETENTION
    jsonl_path: str | None = None


@dataclass(frozen=True)
class OtelConfig:
    enabled: bool = False
    service_name: str = "hook-chain"
    endpoint: str = "http://localhost:4317"
    protocol: str = "grpc"
    resource_attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ChainConfig:
    """Top-level configuration."""

    chains: tuple[ChainEntry, ...] = ()
    audit: AuditConfig = field(default_factory=AuditConfig)
    otel: OtelConfig = field(default_factory=OtelConfig)
    source: str | None = None

    def resolve(self, event_name: str, tool_name: str) -> list[HookSpec]:
        from hookchain.resolver import resolve_chain

        return resolve_chain(event_name, tool_name, self.chains)


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h|d)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


def parse_duration(value: str | int | float) -> float:
    """Parse a duration into seconds.

    Accepts numbers (seconds) and strings such as ``"500ms"``, ``"5s"``,
    ``"1h30m"`` or ``"7d"``.

    Raises:
        HookChainConfigError: If the value cannot be parsed.
    """
    if isinstance(value, bool):
        raise HookChainConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise HookChainConfigError(f"Invalid duration: {value!r} (negative)")
        return float(value)

    text = value.strip()
    if not text:
        raise HookChainConfigError("Invalid duration: empty string")

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if pos != len(text) or pos == 0:
        raise HookChainConfigError(f"Invalid duration: {value!r}")
    return total


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


def _parse_env(raw: Any, hook_name: str) -> dict[str, str]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    env: dict[str, str] = {}
    for item in raw:
        key, sep, val = item.partition("=")
        if not sep or not key:
            raise HookChainConfigError(f"Hook '{hook_name}': env entry {item!r} must be KEY=VALUE")
        env[key] = val
    return env


def _parse_timeout(raw: Any) -> float | None:
    if raw is None:
        return None
    timeout = parse_duration(raw)
    # Zero means "use the engine default".
    return timeout if timeout > 0 else None


def _parse_retention(raw: Any) -> float:
    if raw is None:
        return DEFAULT_RETENTION
    try:
        return parse_duration(raw)
    except HookChainConfigError as e:
        logger.warning("audit.retention: %s, using default of 7d", e)
        return DEFAULT_RETENTION


def _build_hook(raw: dict) -> HookSpec:
    name = raw["name"]
    return HookSpec(
        name=name,
        command=raw["command"],
        args=tuple(raw.get("args") or ()),
        timeout=_parse_timeout(raw.get("timeout")),
        env=_parse_env(raw.get("env"), name),
        on_error=raw.get("on_error") or ON_ERROR_DENY,
    )


def _build_config(data: dict, source: str | None) -> ChainConfig:
    chains = tuple(
        ChainEntry(
            event=c["event"],
            tools=tuple(c.get("tools") or ()),
            hooks=tuple(_build_hook(h) for h in c.get("hooks") or ()),
        )
        for c in data.get("chains") or ()
    )

    audit_raw = data.get("audit") or {}
    audit = AuditConfig(
        disabled=bool(audit_raw.get("disabled", False)),
        db_path=audit_raw.get("db_path") or None,
        retention=_parse_retention(audit_raw.get("retention")),
        jsonl_path=audit_raw.get("jsonl_path") or None,
    )

    otel_raw = (data.get("observability") or {}).get("otel") or {}
    otel = OtelConfig(
        enabled=bool(otel_raw.get("enabled", False)),
        service_name=otel_raw.get("service_name", "hook-chain"),
        endpoint=otel_raw.get("endpoint", "http://localhost:4317"),
        protocol=otel_raw.get("protocol", "grpc"),
        resource_attributes=dict(otel_raw.get("resource_attributes") or {}),
    )

    return ChainConfig(chains=chains, audit=audit, otel=otel, source=source)


def _validate_schema(data: dict) -> None:
    schema = _get_schema()
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path)
        where = f" at '{location}'" if location else ""
        raise HookChainConfigError(f"Schema validation failed{where}: {e.message}") from e


def _parse(raw_bytes: bytes, source: str | None) -> ChainConfig:
    try:
        data = yaml.safe_load(raw_bytes)
    except yaml.YAMLError as e:
        raise HookChainConfigError(f"YAML parse error: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise HookChainConfigError("YAML document must be a mapping")

    _validate_schema(data)
    return _build_config(data, source)


def load_config_file(source: str | Path) -> ChainConfig:
    """Load and validate a configuration file.

    Raises:
        HookChainConfigError: If the file is unreadable, too large, not valid
            YAML, or fails schema validation.
    """
    path = Path(source)
    try:
        file_size = path.stat().st_size
        if file_size > MAX_CONFIG_SIZE:
            raise HookChainConfigError(f"Config file too large ({file_size} bytes, max {MAX_CONFIG_SIZE})")
        raw_bytes = path.read_bytes()
    except OSError as e:
        raise HookChainConfigError(f"read {path}: {e}") from e

    try:
        return _parse(raw_bytes, str(path))
    except HookChainConfigError as e:
        raise HookChainConfigError(f"{path}: {e}") from e


def load_config_string(content: str | bytes) -> ChainConfig:
    """Load and validate configuration from a YAML string or bytes."""
    raw_bytes = content.encode("utf-8") if isinstance(content, str) else content
    if len(raw_bytes) > MAX_CONFIG_SIZE:
        raise HookChainConfigError(f"Config content too large ({len(raw_bytes)} bytes, max {MAX_CONFIG_SIZE})")
    return _parse(raw_bytes, None)


def find_config_path() -> Path | None:
    """Locate the configuration file.

    Search order: ``$HOOK_CHAIN_CONFIG`` (must exist), then
    ``$XDG_CONFIG_HOME/hook-chain/config.yaml``, then
    ``~/.config/hook-chain/config.yaml``.
    """
    explicit = os.environ.get("HOOK_CHAIN_CONFIG")
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise HookChainConfigError(f"$HOOK_CHAIN_CONFIG points to {explicit} which does not exist")
        return path

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        path = Path(xdg) / "hook-chain" / "config.yaml"
        if path.exists():
            return path

    try:
        home = Path.home()
    except RuntimeError:
        return None
    path = home / ".config" / "hook-chain" / "config.yaml"
    if path.exists():
        return path
    return None


def load_config() -> ChainConfig:
    """Find and load the configuration. No file means an empty configuration."""
    path = find_config_path()
    if path is None:
        return ChainConfig()
    return load_config_file(path)


def default_db_path() -> Path:
    """Default audit database location.

    ``$HOOK_CHAIN_AUDIT_DB``, then ``$XDG_DATA_HOME/hook-chain/audit.db``,
    then ``~/.local/share/hook-chain/audit.db``.
    """
    explicit = os.environ.get("HOOK_CHAIN_AUDIT_DB")
    if explicit:
        return Path(explicit)
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        base = Path(data_home)
    else:
        try:
            base = Path.home() / ".local" / "share"
        except RuntimeError:
            base = Path(".")
    return base / "hook-chain" / "audit.db"


def audit_enabled(cfg: ChainConfig) -> bool:
    return os.environ.get("HOOK_CHAIN_AUDIT") != "0" and not cfg.audit.disabled
