"""Process-based handler runtime.

Handler code runs in a dedicated worker process that can be killed. A call
that exceeds the timeout terminates the worker, so a handler stuck in
`while True: pass` cannot hang the engine.

Trade-offs:
- Pro: runaway handler code is actually stopped
- Pro: handler state lives in its own heap, isolated from the engine
- Con: worker start-up cost (one process per runtime)
- Con: a killed worker loses every instance it hosted; the next call starts
  a fresh worker, and calls against lost instances fail as HandlerFault
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing as mp
from multiprocessing.connection import Connection
from typing import Any

from .host import HandlerHost, RemoteCallError
from .interface import DEFAULT_HANDLER_TIMEOUT, HandlerRuntime

logger = logging.getLogger(__name__)

_READY = b"ready"
_SHUTDOWN = b"shutdown"


def _runtime_worker(conn: Connection) -> None:
    """Worker loop that runs in the child process."""
    host = HandlerHost()
    conn.send_bytes(_READY)
    while True:
        try:
            message = conn.recv_bytes()
        except (EOFError, OSError):
            break
        if message == _SHUTDOWN:
            break
        conn.send_bytes(host.handle(message))
    conn.close()


class ProcessRuntime(HandlerRuntime):
    """Runtime whose handler code lives in a killable worker process."""

    def __init__(
        self,
        timeout: float = DEFAULT_HANDLER_TIMEOUT,
        start_method: str = "spawn",
        startup_timeout: float = 30.0,
    ):
        super().__init__(timeout=timeout)
        self.startup_timeout = startup_timeout
        self._ctx = mp.get_context(start_method)
        self._process: Any = None
        self._conn: Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def _alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def _start(self) -> None:
        parent_conn, child_conn = self._ctx.Pipe(duplex=True)
        process = self._ctx.Process(
            target=_runtime_worker,
            args=(child_conn,),
            name="tersh-handler-runtime",
            daemon=True,
        )
        process.start()
        child_conn.close()
        self._process = process
        self._conn = parent_conn

        if not parent_conn.poll(self.startup_timeout) or parent_conn.recv_bytes() != _READY:
            self._kill()
            raise RemoteCallError(
                f"handler runtime worker did not start within {self.startup_timeout:g}s"
            )
        logger.debug("started handler runtime worker pid=%s", process.pid)

    def _kill(self) -> None:
        process, conn = self._process, self._conn
        self._process = None
        self._conn = None
        if process is not None and process.is_alive():
            process.terminate()  # SIGTERM
            process.join(timeout=1)
            if process.is_alive():
                process.kill()  # SIGKILL
                process.join()
            logger.info("killed handler runtime worker pid=%s", process.pid)
        if conn is not None:
            conn.close()

    def _roundtrip(self, message: bytes) -> bytes:
        conn = self._conn
        if conn is None:
            raise RemoteCallError("handler runtime worker is not running")
        try:
            conn.send_bytes(message)
            if not conn.poll(self.timeout):
                raise TimeoutError
            return conn.recv_bytes()
        except (EOFError, OSError, BrokenPipeError) as e:
            raise RemoteCallError(f"handler runtime worker died: {e or type(e).__name__}") from None

    async def _invoke(self, message: bytes) -> bytes:
        async with self._lock:
            if not self._alive():
                if self._process is not None:
                    self._kill()
                await asyncio.to_thread(self._start)
            try:
                return await asyncio.to_thread(self._roundtrip, message)
            except (TimeoutError, RemoteCallError):
                await asyncio.to_thread(self._kill)
                raise
            except asyncio.CancelledError:
                self._kill()
                raise

    async def close(self) -> None:
        async with self._lock:
            if self._conn is not None and self._alive():
                try:
                    self._conn.send_bytes(_SHUTDOWN)
                except (OSError, BrokenPipeError):
                    pass
                await asyncio.to_thread(self._process.join, 1)
            await asyncio.to_thread(self._kill)
