"""Chain execution audit records, redaction, and file-based auditors."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

MAX_STDERR_LEN = 512
MAX_TOOL_DETAIL_LEN = 256


class ChainOutcome(StrEnum):
    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"
    ERROR = "error"


class HookOutcome(StrEnum):
    PASS = "pass"
    DENY = "deny"
    SKIP = "skip"
    ERROR = "error"
    ASK = "ask"
    MERGE = "merge"
    CONTEXT = "context"


@dataclass
class HookResult:
    """One hook execution within a chain."""

    hook_index: int
    hook_name: str
    exit_code: int  # -1 = launch failure
    outcome: HookOutcome
    duration_ms: int = 0
    stderr: str = ""
    id: int | None = None
    chain_id: int | None = None


@dataclass
class ChainExecution:
    """One engine invocation."""

    event_name: str = ""
    tool_name: str = ""
    tool_detail: str = ""
    chain_len: int = 0
    outcome: ChainOutcome = ChainOutcome.ALLOW
    reason: str = ""
    duration_ms: int = 0
    session_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    hooks: list[HookResult] = field(default_factory=list)
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["outcome"] = str(self.outcome)
        for h in data["hooks"]:
            h["outcome"] = str(h["outcome"])
        return data


@dataclass
class AuditStats:
    total_chains: int = 0
    count_by_outcome: dict[str, int] = field(default_factory=dict)
    avg_duration_ms: float = 0.0
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


@runtime_checkable
class Auditor(Protocol):
    """Protocol for chain audit consumers.

    Errors raised here are logged by the engine and never affect a result.
    """

    async def record_chain(self, entry: ChainExecution) -> None: ...

    async def close(self) -> None: ...


def truncate_stderr(text: str, limit: int = MAX_STDERR_LEN) -> str:
    """Cap *text* at *limit* bytes, ending in ``...`` when cut."""
    if limit <= 0:
        return ""
    raw = text.encode("utf-8")
    if len(raw) <= limit:
        return text
    if limit <= 3:
        return raw[:limit].decode("utf-8", errors="ignore")
    return raw[: limit - 3].decode("utf-8", errors="ignore") + "..."


class RedactionPolicy:
    """Scrub secrets out of text that lands in the audit trail."""

    BASH_REDACTION_PATTERNS: list[tuple[str, str]] = [
        (r"(export\s+\w*(?:KEY|TOKEN|SECRET|PASSWORD|CREDENTIAL)\w*=)\S+", r"\1[REDACTED]"),
        (r"(\b(?:mysql|mysqldump|mysqladmin)\b[^|;&\n]*?\s-p\s?)\S+", r"\1[REDACTED]"),
        (r"(--password[= ])\S+", r"\1[REDACTED]"),
        (r"(://\w+:)\S+(@)", r"\1[REDACTED]\2"),
    ]

    SECRET_VALUE_PATTERNS = [
        r"(sk-[a-zA-Z0-9]{20,})",
        r"(AKIA[A-Z0-9]{16})",
        r"(eyJ[a-zA-Z0-9_-]{20,}\.[a-zA-Z0-9_.-]*)",
        r"(ghp_[a-zA-Z0-9]{36})",
        r"(xox[bpas]-[a-zA-Z0-9-]{10,})",
    ]

    def __init__(self, custom_patterns: list[tuple[str, str]] | None = None, detect_secret_values: bool = True):
        self._patterns = (custom_patterns or []) + self.BASH_REDACTION_PATTERNS
        self._detect_values = detect_secret_values

    def redact(self, text: str) -> str:
        result = text
        for pattern, replacement in self._patterns:
            result = re.sub(pattern, replacement, result)
        if self._detect_values:
            for pattern in self.SECRET_VALUE_PATTERNS:
                result = re.sub(pattern, "[REDACTED]", result)
        return result


def _count_lines(text: str) -> int:
    if not text:
        return 0
    return text.count("\n") + 1


def extract_tool_detail(tool_name: str, tool_input: Any, redaction: RedactionPolicy | None = None) -> str:
    """Human-readable one-liner describing a tool call, for audit display.

    Supports Bash, Read, Write and Edit. Anything else (or malformed input)
    yields an empty string.
    """
    if not isinstance(tool_input, dict):
        return ""

    def _str(key: str) -> str:
        value = tool_input.get(key, "")
        return value if isinstance(value, str) else ""

    if tool_name == "Bash":
        detail = (redaction or RedactionPolicy()).redact(_str("command"))
    elif tool_name == "Read":
        detail = _str("file_path")
    elif tool_name == "Write":
        detail = f"{_str('file_path')} (+{_count_lines(_str('content'))} lines)"
    elif tool_name == "Edit":
        removed = _count_lines(_str("old_string"))
        added = _count_lines(_str("new_string"))
        detail = f"{_str('file_path')} (-{removed}/+{added} lines)"
    else:
        return ""

    return detail[:MAX_TOOL_DETAIL_LEN]


class JsonlAuditor:
    """Append chain executions as JSON lines to a file."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    async def record_chain(self, entry: ChainExecution) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), default=str) + "\n"
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line)

    async def close(self) -> None:
        return None


class MultiAuditor:
    """Fan out to several auditors; one failing does not stop the others."""

    def __init__(self, auditors: list[Auditor]):
        self._auditors = list(auditors)

    async def record_chain(self, entry: ChainExecution) -> None:
        errors: list[Exception] = []
        for auditor in self._auditors:
            try:
                await auditor.record_chain(entry)
            except Exception as exc:
                logger.warning("auditor %s failed: %s", type(auditor).__name__, exc)
                errors.append(exc)
        if errors:
            raise errors[0]

    async def close(self) -> None:
        for auditor in self._auditors:
            try:
                await auditor.close()
            except Exception as exc:
                logger.warning("closing auditor %s failed: %s", type(auditor).__name__, exc)
