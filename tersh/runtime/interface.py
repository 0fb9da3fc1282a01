"""Runtime interface - ABC for the boundary between the engine and handler code."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from ..errors import HandlerFault, HandlerTimeout
from ..models import Command, PrepareResult, SettingsSchema, SummaryResult, schema_from_dict
from .host import RemoteCallError, decode_reply, encode_call

if TYPE_CHECKING:
    from ..registry import FactoryRef

logger = logging.getLogger(__name__)

DEFAULT_HANDLER_TIMEOUT = 10.0


@dataclass(frozen=True)
class InstanceHandle:
    """Reference to a handler instance living on the other side of the boundary."""

    instance_id: str
    handler: str


class HandlerRuntime(ABC):
    """
    Abstract bridge to handler code.

    Every call is serialized, bounded by `timeout` seconds, and any failure
    on the handler side comes back as HandlerFault / HandlerTimeout naming
    the handler and the call. Calls are never retried here.
    """

    def __init__(self, timeout: float = DEFAULT_HANDLER_TIMEOUT):
        self.timeout = timeout

    @abstractmethod
    async def _invoke(self, message: bytes) -> bytes:
        """
        Deliver one serialized call and return the serialized reply.

        Must raise TimeoutError when no reply arrives within self.timeout and
        RemoteCallError when the transport itself fails.
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def __aenter__(self) -> HandlerRuntime:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _call(self, handler: str, op: str, args: dict[str, Any]) -> Any:
        try:
            message = encode_call(op, args)
        except (TypeError, ValueError) as e:
            raise HandlerFault(handler, op, f"arguments are not JSON serializable: {e}") from None
        try:
            reply = await self._invoke(message)
            return decode_reply(reply)
        except TimeoutError:
            logger.warning("handler %s: %s timed out after %ss", handler, op, self.timeout)
            raise HandlerTimeout(handler, op, self.timeout) from None
        except RemoteCallError as e:
            logger.warning("handler %s: %s failed: %s", handler, op, e.detail)
            if e.remote_traceback:
                logger.debug("remote traceback:\n%s", e.remote_traceback)
            raise HandlerFault(handler, op, e.detail) from None

    # -------------------------------------------------------------------------
    # Factory calls
    # -------------------------------------------------------------------------

    async def settings_schema(self, ref: FactoryRef) -> SettingsSchema:
        data = await self._call(ref.name, "settings_schema", {"target": ref.target})
        try:
            return schema_from_dict(data)
        except ValueError as e:
            raise HandlerFault(ref.name, "settings_schema", str(e)) from None

    async def matches(self, ref: FactoryRef, command: str) -> bool:
        result = await self._call(ref.name, "matches", {"target": ref.target, "command": command})
        if not isinstance(result, bool):
            raise HandlerFault(ref.name, "matches", f"expected a bool, got {result!r}")
        return result

    async def create(
        self,
        ref: FactoryRef,
        command: Command,
        settings: dict[str, Any],
    ) -> InstanceHandle:
        instance_id = await self._call(
            ref.name,
            "create",
            {"target": ref.target, "command": command, "settings": settings},
        )
        if not isinstance(instance_id, str):
            raise HandlerFault(ref.name, "create", f"expected an instance id, got {instance_id!r}")
        return InstanceHandle(instance_id=instance_id, handler=ref.name)

    # -------------------------------------------------------------------------
    # Instance calls
    # -------------------------------------------------------------------------

    async def prepare(self, handle: InstanceHandle) -> PrepareResult:
        data = await self._call(handle.handler, "prepare", {"instance": handle.instance_id})
        try:
            return PrepareResult.from_dict(data)
        except ValueError as e:
            raise HandlerFault(handle.handler, "prepare", str(e)) from None

    async def summarize(
        self,
        handle: InstanceHandle,
        stdout_chunk: str,
        stderr_chunk: str,
        exit_code: int | None,
    ) -> SummaryResult:
        data = await self._call(
            handle.handler,
            "summarize",
            {
                "instance": handle.instance_id,
                "stdout": stdout_chunk,
                "stderr": stderr_chunk,
                "exit_code": exit_code,
            },
        )
        try:
            return SummaryResult.from_dict(data)
        except ValueError as e:
            raise HandlerFault(handle.handler, "summarize", str(e)) from None

    async def release(self, handle: InstanceHandle) -> None:
        """Drop the instance. Failures are logged, not raised."""
        try:
            await self._call(handle.handler, "release", {"instance": handle.instance_id})
        except HandlerFault as e:
            logger.debug("release of %s failed: %s", handle.instance_id, e)


def create_runtime(
    backend: str = "process",
    timeout: float = DEFAULT_HANDLER_TIMEOUT,
) -> HandlerRuntime:
    """Factory for creating handler runtimes."""
    if backend == "process":
        from .process_backend import ProcessRuntime

        return ProcessRuntime(timeout=timeout)
    elif backend == "thread":
        from .thread_backend import ThreadRuntime

        return ThreadRuntime(timeout=timeout)
    else:
        raise ValueError(f"Unknown handler runtime backend: {backend}")
