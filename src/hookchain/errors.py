"""Exception hierarchy for hook-chain."""

from __future__ import annotations


class HookChainError(Exception):
    """Base class for every error raised by hook-chain."""


class HookChainConfigError(HookChainError):
    """Raised for configuration load/validation errors."""


class ParseError(HookChainError):
    """The host envelope is not a JSON object or has mistyped known fields."""


class MergeError(HookChainError):
    """A merge operand is present but is not a JSON object."""


class LaunchError(HookChainError):
    """A hook could not be run to completion (missing binary, spawn failure, timeout)."""

    def __init__(self, message: str, *, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class ProtocolError(HookChainError):
    """A hook exited 0 but wrote output that is not a valid hook envelope."""
