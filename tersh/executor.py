"""
Execution orchestrator.

One Execution runs one command:

    matching -> preparing -> running -> summarizing -> done
                       (any stage) -> failed

- matching: the registry picks a handler (or none), settings are resolved
  against its schema and an instance is created
- preparing: prepare() may rewrite the command and add environment variables;
  skipped in exact mode. A fault here is fatal (PrepareFailed), the original
  command never runs.
- running: the process is spawned without a shell; stdout and stderr are read
  concurrently and fed to the handler through one queue so calls into the
  instance are strictly serial
- summarizing: the final summarize call decides the summary

cancel() interrupts whichever handler call or process wait is pending; the
Cancelled error carries the stage it interrupted.

Fatal errors (TershError subclasses) propagate with their stage. Handler
faults while summarizing are recovered by the SummarySession.
"""

from __future__ import annotations

import asyncio
import codecs
from enum import Enum
import logging
import os
from pathlib import Path
import shlex
import signal
import time
from typing import Awaitable, TypeVar

from .config import TershConfig, load_config
from .errors import Cancelled, HandlerFault, PrepareFailed, SpawnError, TershError, TimedOut
from .models import Command, ExecutedCommand, ExecuteRequest, ExecuteResult, command_text
from .registry import FactoryRef, HandlerRegistry, default_registry
from .runtime.interface import HandlerRuntime, InstanceHandle, create_runtime
from .settings import resolve_settings
from .summarizer import SummarySession

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exit code reported when a timed-out command is summarized anyway
TIMEOUT_EXIT_CODE = 124

# How long to wait for pipes to drain after killing a timed-out process
_DRAIN_GRACE_SEC = 5.0


class ExecutionState(str, Enum):
    MATCHING = "matching"
    PREPARING = "preparing"
    RUNNING = "running"
    SUMMARIZING = "summarizing"
    DONE = "done"
    FAILED = "failed"


def _argv(command: Command) -> list[str]:
    if isinstance(command, list):
        return list(command)
    try:
        return shlex.split(command)
    except ValueError as e:
        raise SpawnError(command, f"cannot split command: {e}") from None


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the child and anything it started in its session."""
    if process.returncode is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


class Execution:
    """A single command execution and its state machine."""

    def __init__(
        self,
        request: ExecuteRequest,
        *,
        registry: HandlerRegistry | None = None,
        config: TershConfig | None = None,
        runtime: HandlerRuntime | None = None,
    ):
        self.request = request
        self.config = config if config is not None else load_config(Path(request.working_dir))
        if registry is None:
            registry = default_registry(
                Path(request.working_dir), discover=self.config.discovery.enabled
            )
        self.registry = registry
        self._runtime = runtime
        self._owns_runtime = runtime is None
        self._cancel = asyncio.Event()
        self.state = ExecutionState.MATCHING
        self.ref: FactoryRef | None = None
        self.handle: InstanceHandle | None = None
        self.diagnostics: list[str] = []

    def _transition(self, state: ExecutionState) -> None:
        logger.debug(
            "%s -> %s: %s",
            self.state.value,
            state.value,
            self.request.command_text,
            extra={"state": state.value, "handler": self.ref.name if self.ref else None},
        )
        self.state = state

    def cancel(self) -> None:
        """Ask a running execution to stop. Must be called on the event loop thread."""
        self._cancel.set()

    def _cancelled(self) -> Cancelled:
        return Cancelled(self.request.command_text, stage=self.state.value)

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise self._cancelled()

    async def _until_cancelled(self, call: Awaitable[T]) -> T:
        """Await one bridge call, abandoning it as soon as cancel() is called."""
        pending = asyncio.ensure_future(call)
        cancelled = asyncio.ensure_future(self._cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {pending, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (pending, cancelled):
                if not task.done():
                    task.cancel()
            await asyncio.gather(pending, cancelled, return_exceptions=True)
        if pending not in done:
            raise self._cancelled()
        return pending.result()

    @property
    def timeout(self) -> float | None:
        if self.request.timeout is not None:
            return self.request.timeout
        return self.config.execution.command_timeout

    async def run(self) -> ExecuteResult:
        """Run the command to completion and return the summarized result."""
        started = time.monotonic()
        runtime = self._runtime or create_runtime(
            self.config.runtime.backend, timeout=self.config.runtime.handler_timeout
        )
        try:
            result = await self._run(runtime)
        except (TershError, asyncio.CancelledError) as e:
            self._transition(ExecutionState.FAILED)
            if isinstance(e, TershError):
                logger.info("execution failed in %s: %s", e.stage, e)
            raise
        finally:
            if self._owns_runtime:
                # Closing the runtime drops every instance it hosted
                await runtime.close()
            elif self.handle is not None:
                await runtime.release(self.handle)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "%s exited %d (%s)",
            self.request.command_text,
            result.exit_code,
            result.handler or "no handler",
            extra={
                "command": self.request.command_text,
                "exit_code": result.exit_code,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def _match(self, runtime: HandlerRuntime) -> None:
        request = self.request
        ref = await self._until_cancelled(self.registry.resolve(request.command_text, runtime))
        if ref is None:
            return
        self.ref = ref
        try:
            schema = await self._until_cancelled(runtime.settings_schema(ref))
        except HandlerFault as e:
            self._abandon_handler(e)
            return
        settings = resolve_settings(
            request.settings, schema, strict=self.config.execution.strict_settings
        )
        try:
            self.handle = await self._until_cancelled(
                runtime.create(ref, request.command, settings)
            )
        except HandlerFault as e:
            self._abandon_handler(e)

    def _abandon_handler(self, error: HandlerFault) -> None:
        """The matched handler could not be set up; run as if none matched."""
        self.diagnostics.append(str(error))
        logger.warning("running without handler: %s", error)
        self.ref = None
        self.handle = None

    async def _run(self, runtime: HandlerRuntime) -> ExecuteResult:
        request = self.request
        working_dir = Path(request.working_dir)

        await self._match(runtime)
        self._check_cancelled()

        command: Command = request.command
        overrides: dict[str, str] = {}
        if self.handle is not None and not request.exact:
            self._transition(ExecutionState.PREPARING)
            try:
                prepared = await self._until_cancelled(runtime.prepare(self.handle))
            except HandlerFault as e:
                raise PrepareFailed(self.handle.handler, e) from e
            command = prepared.command
            overrides = prepared.env
            if command != request.command:
                logger.debug("command rewritten to %r", command_text(command))
            self._check_cancelled()

        self._transition(ExecutionState.RUNNING)
        session = SummarySession(
            runtime, self.handle, max_chars=self.config.execution.max_summary_chars
        )
        env = {**os.environ, **request.env, **overrides}
        exit_code, timed_out = await self._stream(command, env, working_dir, session)

        self._transition(ExecutionState.SUMMARIZING)
        summary = await self._until_cancelled(session.finish(exit_code))

        self._transition(ExecutionState.DONE)
        return ExecuteResult(
            summary=summary.summary or "",
            exit_code=exit_code,
            executed=ExecutedCommand(
                command=command, env_overrides=dict(overrides), working_dir=working_dir
            ),
            truncation=summary.truncation,
            handler=self.ref.name if self.ref else None,
            diagnostics=self.diagnostics + session.diagnostics,
            timed_out=timed_out,
        )

    async def _stream(
        self,
        command: Command,
        env: dict[str, str],
        working_dir: Path,
        session: SummarySession,
    ) -> tuple[int, bool]:
        """Spawn the process and pump its output into the session."""
        argv = _argv(command)
        if not argv:
            raise SpawnError(command_text(command), "empty command")
        if not working_dir.is_dir():
            raise SpawnError(argv[0], f"working directory does not exist: {working_dir}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(working_dir),
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise SpawnError(argv[0], "command not found") from None
        except PermissionError:
            raise SpawnError(argv[0], "permission denied") from None
        except OSError as e:
            raise SpawnError(argv[0], e.strerror or str(e)) from None

        logger.debug("spawned pid=%s: %s", process.pid, shlex.join(argv))

        chunk_size = self.config.execution.read_chunk_size
        queue: asyncio.Queue[tuple[str, str | None]] = asyncio.Queue()

        async def read(stream: asyncio.StreamReader, name: str) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                data = await stream.read(chunk_size)
                if not data:
                    tail = decoder.decode(b"", final=True)
                    if tail:
                        await queue.put((name, tail))
                    await queue.put((name, None))
                    return
                text = decoder.decode(data)
                if text:
                    await queue.put((name, text))

        async def consume() -> None:
            open_streams = 2
            while open_streams:
                batch = [await queue.get()]
                while not queue.empty():
                    batch.append(queue.get_nowait())
                out: list[str] = []
                err: list[str] = []
                for name, text in batch:
                    if text is None:
                        open_streams -= 1
                    elif name == "stdout":
                        out.append(text)
                    else:
                        err.append(text)
                if out or err:
                    await session.feed("".join(out), "".join(err))

        async def drain() -> int:
            await consumer
            return await process.wait()

        readers = [
            asyncio.create_task(read(process.stdout, "stdout")),
            asyncio.create_task(read(process.stderr, "stderr")),
        ]
        consumer = asyncio.create_task(consume())
        drained = asyncio.create_task(drain())
        cancelled = asyncio.create_task(self._cancel.wait())
        tasks = [*readers, consumer, drained, cancelled]

        try:
            done, _ = await asyncio.wait(
                {drained, cancelled},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if drained in done:
                return drained.result(), False

            _kill(process)
            if cancelled in done:
                logger.info("cancelled pid=%s", process.pid)
                raise self._cancelled()

            logger.info("timed out after %ss pid=%s", self.timeout, process.pid)
            if not self.request.partial_on_timeout:
                raise TimedOut(self.request.command_text, self.timeout)

            # Best-effort: summarize whatever was read before the kill
            await asyncio.wait({drained}, timeout=_DRAIN_GRACE_SEC)
            return TIMEOUT_EXIT_CODE, True
        finally:
            _kill(process)
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if process.returncode is None:
                await process.wait()


async def execute_command(
    request: ExecuteRequest,
    *,
    registry: HandlerRegistry | None = None,
    config: TershConfig | None = None,
    runtime: HandlerRuntime | None = None,
) -> ExecuteResult:
    """Run one request. Raises TershError subclasses on fatal failures."""
    execution = Execution(request, registry=registry, config=config, runtime=runtime)
    return await execution.run()


def run_command(
    request: ExecuteRequest,
    *,
    registry: HandlerRegistry | None = None,
    config: TershConfig | None = None,
    runtime: HandlerRuntime | None = None,
) -> ExecuteResult:
    """Synchronous wrapper around execute_command()."""
    return asyncio.run(
        execute_command(request, registry=registry, config=config, runtime=runtime)
    )
