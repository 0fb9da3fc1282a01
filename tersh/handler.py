"""
Handler contract.

A handler module exposes a HandlerFactory. The factory decides whether it
handles a command and creates one Handler instance per execution. An instance
is single-use: it is created, prepared at most once, fed output, and thrown
away.

Handlers never run in the caller's code path directly; the runtime bridge
(tersh.runtime) loads them and calls them through a serialized boundary.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .models import Command, PrepareResult, SettingsSchema, SummaryResult


class Handler(ABC):
    """One handler instance, bound to one command execution."""

    def __init__(self, command: Command, settings: dict[str, Any]):
        self.command = command
        self.settings = dict(settings)

    def prepare(self) -> PrepareResult:
        """
        Rewrite the command and add environment variables.

        Skipped entirely in exact mode. The default leaves the command alone.
        """
        return PrepareResult(command=self.command)

    @abstractmethod
    def summarize(
        self,
        stdout_chunk: str,
        stderr_chunk: str,
        exit_code: int | None,
    ) -> SummaryResult:
        """
        Process the next piece of output.

        Called repeatedly while the process runs (exit_code=None) and exactly
        once more after it exits. Return SummaryResult(summary=None) to keep
        buffering. The final summary must not depend on how the output was
        split into chunks.
        """
        ...


class BufferedHandler(Handler):
    """
    Handler that buffers all output and decides once, at exit.

    Subclasses implement finalize(). Deciding only at exit keeps the summary
    independent of chunk boundaries.
    """

    def __init__(self, command: Command, settings: dict[str, Any]):
        super().__init__(command, settings)
        self.stdout = ""
        self.stderr = ""

    def summarize(
        self,
        stdout_chunk: str,
        stderr_chunk: str,
        exit_code: int | None,
    ) -> SummaryResult:
        self.stdout += stdout_chunk
        self.stderr += stderr_chunk
        if exit_code is None:
            return SummaryResult()
        return self.finalize(exit_code)

    @abstractmethod
    def finalize(self, exit_code: int) -> SummaryResult:
        """Build the final summary from the complete buffers."""
        ...


class HandlerFactory(ABC):
    """Matches commands and creates handler instances."""

    # Declared name; local handlers override built-ins with the same name.
    name: str = ""

    @abstractmethod
    def matches(self, command: str) -> bool:
        """Return True if this handler should process the command."""
        ...

    @abstractmethod
    def create(self, command: Command, settings: dict[str, Any]) -> Handler:
        """Create a fresh instance for one execution."""
        ...

    def settings_schema(self) -> SettingsSchema:
        """Describe the settings this handler accepts."""
        return {}
