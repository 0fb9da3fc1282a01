"""
Summarization session: the one path by which output reaches a handler.

Both the executor (live process output) and the test harness (recorded
fixture output) drive handlers through a SummarySession, so a fixture replays
exactly what a real run would do.

Rules:
- feed() calls summarize(..., exit_code=None); a non-None answer there is
  progress only, never the final summary
- finish() makes the final summarize call even when there is no output left
- a handler fault stops all further handler calls; the result becomes the
  raw-output fallback plus a diagnostic
- a handler that still has no summary after the final call gets the fallback,
  marked content_too_large
- a final summary longer than max_chars is cut and marked content_too_large,
  unless the handler reported its own truncation
"""

from __future__ import annotations

import logging

from .errors import HandlerFault
from .models import SummaryResult, TruncationInfo
from .runtime.interface import HandlerRuntime, InstanceHandle

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUMMARY_CHARS = 10_000


def truncate_text(text: str, max_chars: int) -> tuple[str, TruncationInfo | None]:
    """Cut text to max_chars, reporting what was dropped."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text, None
    dropped = len(text) - max_chars
    return text[:max_chars], TruncationInfo(
        truncated=True,
        reason="content_too_large",
        description=f"Output truncated: {dropped} of {len(text)} characters omitted",
    )


class SummarySession:
    """
    Drives one handler instance from first chunk to final summary.

    With handle=None there is no handler and the session is a raw
    pass-through: the result is stdout followed by stderr, unmodified.
    """

    def __init__(
        self,
        runtime: HandlerRuntime | None,
        handle: InstanceHandle | None,
        max_chars: int = DEFAULT_MAX_SUMMARY_CHARS,
    ):
        self.runtime = runtime
        self.handle = handle
        self.max_chars = max_chars
        self.stdout = ""
        self.stderr = ""
        self.progress: list[str] = []
        self.diagnostics: list[str] = []
        self._faulted = handle is None
        self._result: SummaryResult | None = None

    @property
    def finished(self) -> bool:
        return self._result is not None

    @property
    def faulted(self) -> bool:
        return self.handle is not None and self._faulted

    def _fault(self, error: HandlerFault) -> None:
        self._faulted = True
        self.diagnostics.append(str(error))
        logger.warning("falling back to raw output: %s", error)

    async def feed(self, stdout: str = "", stderr: str = "") -> None:
        """Deliver output read while the process is still running."""
        if self.finished:
            return
        self.stdout += stdout
        self.stderr += stderr
        if self._faulted or (not stdout and not stderr):
            return
        try:
            result = await self.runtime.summarize(self.handle, stdout, stderr, None)
        except HandlerFault as e:
            self._fault(e)
            return
        if result.decided:
            self.progress.append(result.summary)

    async def finish(self, exit_code: int, stdout: str = "", stderr: str = "") -> SummaryResult:
        """
        Make the final summarize call and return the final result.

        Calling finish() again returns the same result without touching the
        handler.
        """
        if self._result is not None:
            return self._result

        self.stdout += stdout
        self.stderr += stderr

        if not self._faulted:
            try:
                result = await self.runtime.summarize(self.handle, stdout, stderr, exit_code)
            except HandlerFault as e:
                self._fault(e)
            else:
                if result.decided:
                    self._result = self._capped(result)
                    return self._result
                message = (
                    f"handler '{self.handle.handler}' returned no summary for exit code "
                    f"{exit_code}; using raw output"
                )
                self.diagnostics.append(message)
                logger.warning(message)
                self._result = self._fallback(force_truncated=True)
                return self._result

        self._result = self._fallback(force_truncated=False)
        return self._result

    def _fallback(self, force_truncated: bool) -> SummaryResult:
        raw = self.stdout + self.stderr
        text, truncation = truncate_text(raw, self.max_chars)
        if truncation is None and force_truncated:
            truncation = TruncationInfo(
                truncated=True,
                reason="content_too_large",
                description="Handler produced no summary; showing raw output",
            )
        return SummaryResult(summary=text, truncation=truncation)

    def _capped(self, result: SummaryResult) -> SummaryResult:
        # Handler-supplied truncation info wins; the summary is left as is
        if result.truncation is not None:
            return result
        text, truncation = truncate_text(result.summary, self.max_chars)
        if truncation is None:
            return result
        logger.info("summary from '%s' cut to %d characters", self.handle.handler, self.max_chars)
        return SummaryResult(summary=text, truncation=truncation)
