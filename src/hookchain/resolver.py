"""Chain resolution — pick the hook list for an (event, tool) pair."""

from __future__ import annotations

from collections.abc import Iterable

from hookchain.config import ChainEntry, HookSpec


def resolve_chain(event_name: str, tool_name: str, chains: Iterable[ChainEntry]) -> list[HookSpec]:
    """Return the hooks of the first chain matching *event_name* and *tool_name*.

    Matching is exact string equality on the event and exact membership of
    the tool name in the chain's tool list. Later matches are never merged
    in. No match returns an empty list.
    """
    for chain in chains:
        if chain.event != event_name:
            continue
        if tool_name in chain.tools:
            return list(chain.hooks)
    return []
