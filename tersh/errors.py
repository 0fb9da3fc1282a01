"""
Error kinds raised by the execution engine.

Fatal kinds (PrepareFailed, SpawnError, Cancelled, TimedOut, and a strict
SettingsTypeError) abort the execution and reach the caller with the failing
stage. HandlerFault/HandlerTimeout raised while summarizing are recovered by
the summarization session and only show up as diagnostics.
"""

from __future__ import annotations

from typing import Any


class TershError(Exception):
    """Base class for all engine errors."""

    kind = "error"
    stage = "execute"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "stage": self.stage, "message": str(self)}


class SettingsTypeError(TershError):
    """A caller-supplied setting does not match the declared type."""

    kind = "settings_type_error"
    stage = "matching"

    def __init__(self, key: str, expected: str, actual: Any):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"setting '{key}' expects {expected}, got {type(actual).__name__} ({actual!r})"
        )


class HandlerFault(TershError):
    """Handler code raised, or returned a result of the wrong shape."""

    kind = "handler_fault"

    def __init__(self, handler: str, call: str, detail: str):
        self.handler = handler
        self.call = call
        self.detail = detail
        super().__init__(f"handler '{handler}' failed in {call}: {detail}")


class HandlerTimeout(HandlerFault):
    """A handler call did not return within the runtime timeout."""

    kind = "handler_timeout"

    def __init__(self, handler: str, call: str, timeout: float):
        self.timeout = timeout
        super().__init__(handler, call, f"no result after {timeout:g}s")


class PrepareFailed(TershError):
    """prepare() faulted; the command was never started."""

    kind = "prepare_failed"
    stage = "preparing"

    def __init__(self, handler: str, cause: HandlerFault):
        self.handler = handler
        self.cause = cause
        super().__init__(f"prepare failed for handler '{handler}': {cause.detail}")


class SpawnError(TershError):
    """The process could not be started."""

    kind = "spawn_error"
    stage = "running"

    def __init__(self, program: str, reason: str):
        self.program = program
        self.reason = reason
        super().__init__(f"could not start '{program}': {reason}")


class Cancelled(TershError):
    """The caller cancelled the execution; `stage` is where it was at the time."""

    kind = "cancelled"
    stage = "running"

    def __init__(self, command: str, stage: str | None = None):
        self.command = command
        if stage is not None:
            self.stage = stage
        super().__init__(f"execution cancelled: {command}")


class TimedOut(TershError):
    """The command exceeded its time limit and was killed."""

    kind = "timed_out"
    stage = "running"

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"command timed out after {timeout:g}s: {command}")
