"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest

from hookchain.config import HookSpec
from hookchain.envelope import HookInput
from hookchain.runner import RunResult


class ScriptedRunner:
    """Runner double: answers each hook by name from a script.

    A script entry is a ``RunResult``, an exception to raise, or a callable
    taking the decoded payload and returning either of those.
    """

    def __init__(self, script: dict[str, Any]):
        self.script = script
        self.calls: list[tuple[str, Any, float | None]] = []

    async def run(self, hook: HookSpec, payload: bytes, *, timeout: float | None = None) -> RunResult:
        decoded = json.loads(payload)
        self.calls.append((hook.name, decoded, timeout))
        action = self.script[hook.name]
        if callable(action) and not isinstance(action, BaseException):
            action = action(decoded)
        if isinstance(action, BaseException):
            raise action
        return action

    @property
    def called(self) -> list[str]:
        return [name for name, _, _ in self.calls]


class RecordingAuditor:
    """Auditor that keeps chain executions in memory (for tests)."""

    def __init__(self):
        self.entries = []
        self.closed = False

    async def record_chain(self, entry):
        self.entries.append(entry)

    async def close(self):
        self.closed = True


class FailingAuditor:
    """Auditor whose writes always fail."""

    def __init__(self):
        self.attempts = 0

    async def record_chain(self, entry):
        self.attempts += 1
        raise RuntimeError("disk full")

    async def close(self):
        pass


@pytest.fixture
def scripted_runner() -> Callable[[dict[str, Any]], ScriptedRunner]:
    return ScriptedRunner


@pytest.fixture
def auditor():
    return RecordingAuditor()


@pytest.fixture
def failing_auditor():
    return FailingAuditor()


@pytest.fixture
def bash_input():
    return HookInput.create(
        session_id="sess-1",
        hook_event_name="PreToolUse",
        tool_name="Bash",
        tool_input={"command": "ls -la", "timeout": 5},
    )


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the real config and audit locations."""
    monkeypatch.delenv("HOOK_CHAIN_CONFIG", raising=False)
    monkeypatch.delenv("HOOK_CHAIN_AUDIT_DB", raising=False)
    monkeypatch.delenv("HOOK_CHAIN_DEBUG", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    monkeypatch.setenv("HOOK_CHAIN_AUDIT", "0")
