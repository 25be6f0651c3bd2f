"""Hook envelopes — the JSON messages exchanged with the host.

``HookInput`` is what the host writes to a hook's stdin. Known fields are
lifted into typed attributes; every key that was received (known or not)
is also kept in an ordered side map so that re-encoding never drops data
the host sent.

``HookOutput`` is what a hook writes to stdout.
"""

from __future__ import annotations

import copy
import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any

from hookchain.errors import HookChainError, ParseError, ProtocolError
from hookchain.merge import NO_VALUE, is_present

INPUT_STRING_FIELDS: tuple[str, ...] = (
    "session_id",
    "transcript_path",
    "cwd",
    "permission_mode",
    "hook_event_name",
    "tool_name",
    "tool_use_id",
)

DECISION_DENY = "deny"
DECISION_ASK = "ask"


def dumps(value: Any) -> bytes:
    """Compact JSON encoding used for everything written on the wire."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _loads(data: bytes | str) -> Any:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return json.loads(data)


@dataclass(frozen=True)
class HookInput:
    """Inbound envelope.

    ALWAYS build via ``HookInput.decode()`` or ``HookInput.create()`` so the
    captured key map stays consistent with the typed fields.
    """

    session_id: str = ""
    transcript_path: str = ""
    cwd: str = ""
    permission_mode: str = ""
    hook_event_name: str = ""
    tool_name: str = ""
    tool_use_id: str = ""
    tool_input: Any = NO_VALUE

    # Every key received from the host, in arrival order.
    extra: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def decode(cls, data: bytes | str) -> HookInput:
        """Parse a host envelope.

        Raises:
            ParseError: On malformed JSON, a non-object document, or a known
                string field carrying a value that is neither a string nor null.
        """
        try:
            raw = _loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ParseError(f"hook input: invalid JSON: {e}") from e

        if not isinstance(raw, dict):
            raise ParseError("hook input: top-level JSON value must be an object")

        known: dict[str, Any] = {}
        for name in INPUT_STRING_FIELDS:
            if name not in raw:
                continue
            value = raw[name]
            # null reads as empty; the key stays in the captured bag.
            if value is None:
                continue
            if not isinstance(value, str):
                raise ParseError(f"hook input: field {name!r} must be a string")
            known[name] = value

        if "tool_input" in raw:
            known["tool_input"] = raw["tool_input"]

        return cls(**known, extra=raw)

    @classmethod
    def create(cls, **fields: Any) -> HookInput:
        """Build an envelope from keyword fields (tests, dry runs)."""
        unknown = {k: fields.pop(k) for k in list(fields) if k not in INPUT_STRING_FIELDS and k != "tool_input"}
        inp = cls(**fields)
        extra = dict(unknown)
        extra.update(inp._known_items())
        return dataclasses.replace(inp, extra=extra)

    def _known_items(self) -> dict[str, Any]:
        items: dict[str, Any] = {}
        for name in INPUT_STRING_FIELDS:
            value = getattr(self, name)
            if value:
                items[name] = value
        if is_present(self.tool_input):
            items["tool_input"] = self.tool_input
        return items

    def to_dict(self) -> dict[str, Any]:
        """Captured keys overlaid with every known non-default field."""
        out = dict(self.extra)
        out.update(self._known_items())
        return out

    def encode(self) -> bytes:
        try:
            return dumps(self.to_dict())
        except (TypeError, ValueError) as e:
            raise HookChainError(f"hook input: cannot encode: {e}") from e

    def with_tool_input(self, value: Any) -> HookInput:
        """Return an independent copy whose tool input is *value*.

        The captured key map is copied so neither side sees the other's
        changes.
        """
        extra = copy.deepcopy(self.extra)
        value = copy.deepcopy(value)
        if is_present(value):
            extra["tool_input"] = value
        else:
            extra.pop("tool_input", None)
        return dataclasses.replace(self, tool_input=value, extra=extra)


@dataclass(frozen=True)
class HookSpecificOutput:
    hook_event_name: str = ""
    permission_decision: str = ""
    permission_decision_reason: str = ""
    updated_input: Any = NO_VALUE
    additional_context: str = ""


_SPECIFIC_WIRE_NAMES = {
    "hook_event_name": "hookEventName",
    "permission_decision": "permissionDecision",
    "permission_decision_reason": "permissionDecisionReason",
    "additional_context": "additionalContext",
}


@dataclass(frozen=True)
class HookOutput:
    """Outbound envelope written by a hook, and by hook-chain itself."""

    hook_specific_output: HookSpecificOutput = field(default_factory=HookSpecificOutput)
    continue_: bool | None = None
    suppress_output: bool | None = None
    system_message: str = ""

    @property
    def is_passthrough(self) -> bool:
        hso = self.hook_specific_output
        return not (
            hso.permission_decision
            or hso.permission_decision_reason
            or is_present(hso.updated_input)
            or hso.additional_context
        )

    @classmethod
    def decision(cls, event_name: str, decision: str, reason: str) -> HookOutput:
        return cls(
            hook_specific_output=HookSpecificOutput(
                hook_event_name=event_name,
                permission_decision=decision,
                permission_decision_reason=reason,
            )
        )

    @classmethod
    def decode(cls, data: bytes | str) -> HookOutput:
        """Parse a hook's stdout.

        Raises:
            ProtocolError: If the output is not JSON or a field has the wrong type.
        """
        try:
            raw = _loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProtocolError(f"invalid JSON: {e}") from e

        if not isinstance(raw, dict):
            raise ProtocolError("hook output must be a JSON object")

        hso_raw = raw.get("hookSpecificOutput")
        if hso_raw is None:
            hso_raw = {}
        if not isinstance(hso_raw, dict):
            raise ProtocolError("hookSpecificOutput must be a JSON object")

        specific: dict[str, Any] = {}
        for attr, wire in _SPECIFIC_WIRE_NAMES.items():
            value = hso_raw.get(wire)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ProtocolError(f"hookSpecificOutput.{wire} must be a string")
            specific[attr] = value

        updated = hso_raw.get("updatedInput")
        if updated is not None:
            specific["updated_input"] = updated

        return cls(
            hook_specific_output=HookSpecificOutput(**specific),
            continue_=_optional_bool(raw, "continue"),
            suppress_output=_optional_bool(raw, "suppressOutput"),
            system_message=_optional_str(raw, "systemMessage"),
        )

    def to_dict(self) -> dict[str, Any]:
        hso = self.hook_specific_output
        specific: dict[str, Any] = {}
        for attr, wire in _SPECIFIC_WIRE_NAMES.items():
            value = getattr(hso, attr)
            if value:
                specific[wire] = value
        if is_present(hso.updated_input):
            # Keep wire order: updatedInput sits before additionalContext.
            ctx = specific.pop("additionalContext", None)
            specific["updatedInput"] = hso.updated_input
            if ctx is not None:
                specific["additionalContext"] = ctx

        out: dict[str, Any] = {"hookSpecificOutput": specific}
        if self.continue_ is not None:
            out["continue"] = self.continue_
        if self.suppress_output is not None:
            out["suppressOutput"] = self.suppress_output
        if self.system_message:
            out["systemMessage"] = self.system_message
        return out

    def encode(self) -> bytes:
        return dumps(self.to_dict())


def _optional_bool(raw: dict, key: str) -> bool | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ProtocolError(f"{key} must be a boolean")
    return value


def _optional_str(raw: dict, key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"{key} must be a string")
    return value
