"""Handler runtimes: the serialized, time-bounded boundary to handler code."""

from .host import HandlerHost, load_factory
from .interface import DEFAULT_HANDLER_TIMEOUT, HandlerRuntime, InstanceHandle, create_runtime
from .process_backend import ProcessRuntime
from .thread_backend import ThreadRuntime

__all__ = [
    "DEFAULT_HANDLER_TIMEOUT",
    "HandlerHost",
    "HandlerRuntime",
    "InstanceHandle",
    "ProcessRuntime",
    "ThreadRuntime",
    "create_runtime",
    "load_factory",
]
