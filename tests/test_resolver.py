"""Tests for chain resolution."""

from __future__ import annotations

from hookchain.config import ChainConfig, ChainEntry, HookSpec
from hookchain.resolver import resolve_chain

A = HookSpec(name="a", command="a")
B = HookSpec(name="b", command="b")
C = HookSpec(name="c", command="c")


class TestResolveChain:
    def test_first_match_only(self):
        chains = [
            ChainEntry(event="PreToolUse", tools=("Bash",), hooks=(A,)),
            ChainEntry(event="PreToolUse", tools=("Bash", "Write"), hooks=(B, C)),
        ]
        assert resolve_chain("PreToolUse", "Bash", chains) == [A]

    def test_later_chain_matches_other_tool(self):
        chains = [
            ChainEntry(event="PreToolUse", tools=("Bash",), hooks=(A,)),
            ChainEntry(event="PreToolUse", tools=("Bash", "Write"), hooks=(B, C)),
        ]
        assert resolve_chain("PreToolUse", "Write", chains) == [B, C]

    def test_event_must_match(self):
        chains = [ChainEntry(event="PostToolUse", tools=("Bash",), hooks=(A,))]
        assert resolve_chain("PreToolUse", "Bash", chains) == []

    def test_exact_tool_membership(self):
        chains = [ChainEntry(event="PreToolUse", tools=("Bash",), hooks=(A,))]
        assert resolve_chain("PreToolUse", "bash", chains) == []
        assert resolve_chain("PreToolUse", "Bas", chains) == []
        assert resolve_chain("PreToolUse", "*", chains) == []

    def test_no_chains(self):
        assert resolve_chain("PreToolUse", "Bash", []) == []

    def test_empty_hook_list_match(self):
        chains = [
            ChainEntry(event="PreToolUse", tools=("Bash",), hooks=()),
            ChainEntry(event="PreToolUse", tools=("Bash",), hooks=(A,)),
        ]
        assert resolve_chain("PreToolUse", "Bash", chains) == []

    def test_config_resolve_delegates(self):
        cfg = ChainConfig(chains=(ChainEntry(event="PreToolUse", tools=("Read",), hooks=(A, B)),))
        assert cfg.resolve("PreToolUse", "Read") == [A, B]
        assert cfg.resolve("PreToolUse", "Bash") == []
