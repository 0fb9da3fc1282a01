"""Thread-based handler runtime.

Handler code runs in-process on a worker thread. Calls still go through the
JSON wire format so handlers behave exactly as they do under the process
backend.

Limitation: Python threads cannot be killed. A call that times out is
abandoned, not stopped; the caller gets HandlerTimeout and moves on while the
thread runs to completion in the background. Each call gets its own daemon
thread, so an abandoned call never holds up event loop shutdown or
interpreter exit. Use the process backend when handler code is not trusted
to terminate.
"""

from __future__ import annotations

import asyncio
import threading

from .host import HandlerHost
from .interface import DEFAULT_HANDLER_TIMEOUT, HandlerRuntime


def _settle(future: asyncio.Future[bytes], reply: bytes) -> None:
    if not future.done():
        future.set_result(reply)


class ThreadRuntime(HandlerRuntime):
    """In-process runtime with bounded waits."""

    def __init__(self, timeout: float = DEFAULT_HANDLER_TIMEOUT):
        super().__init__(timeout=timeout)
        self._host = HandlerHost()

    async def _invoke(self, message: bytes) -> bytes:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[bytes] = loop.create_future()

        def work() -> None:
            reply = self._host.handle(message)
            try:
                loop.call_soon_threadsafe(_settle, future, reply)
            except RuntimeError:
                # Loop already closed: the caller gave up on this call long ago
                return

        threading.Thread(target=work, name="tersh-handler", daemon=True).start()
        return await asyncio.wait_for(future, timeout=self.timeout)
