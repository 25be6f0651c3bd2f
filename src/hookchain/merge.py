"""Shallow JSON patch merge for threading tool input between hooks."""

from __future__ import annotations

import json
from typing import Any

from hookchain.errors import MergeError


class _NoValue:
    """Marker for an absent JSON value (distinct from ``null`` and ``{}``)."""

    _instance: _NoValue | None = None

    def __new__(cls) -> _NoValue:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_VALUE"

    def __copy__(self) -> _NoValue:
        return self

    def __deepcopy__(self, memo: dict) -> _NoValue:
        return self


NO_VALUE: Any = _NoValue()


def is_present(value: Any) -> bool:
    return value is not NO_VALUE


def shallow_merge(base: Any, patch: Any) -> Any:
    """Merge *patch* into *base* at the top level only.

    Keys from *patch* replace keys in *base* wholesale, whatever the value
    shape. Nested objects are never combined. Neither operand is mutated.

    Returns ``NO_VALUE`` when both operands are absent.

    Raises:
        MergeError: If a present operand is not a JSON object.
    """
    if base is NO_VALUE and patch is NO_VALUE:
        return NO_VALUE
    if base is NO_VALUE:
        _require_object(patch, "patch")
        return dict(patch)
    if patch is NO_VALUE:
        _require_object(base, "base")
        return dict(base)

    _require_object(base, "base")
    _require_object(patch, "patch")

    merged = dict(base)
    merged.update(patch)
    return merged


def _require_object(value: Any, role: str) -> None:
    if not isinstance(value, dict):
        raise MergeError(f"shallow merge {role}: expected a JSON object, got {_json_type(value)}")


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


def canonical_json(value: Any) -> str | None:
    """Serialize with sorted keys so equal documents compare equal as text."""
    if value is NO_VALUE:
        return None
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def json_equal(a: Any, b: Any) -> bool:
    """Structural, key-order independent equality of two JSON values.

    ``True`` and ``1`` are different JSON values, so plain ``==`` is not used.
    """
    return canonical_json(a) == canonical_json(b)
