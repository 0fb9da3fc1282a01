"""
Handler host: the side of the runtime boundary that runs handler code.

The host loads factories, keeps the live handler instances and answers
serialized calls. Both runtime backends run exactly this code; they only
differ in where it runs (a worker thread or a worker process).

Wire format (UTF-8 JSON):
    call:  {"op": "<name>", "args": {...}}
    reply: {"ok": true, "result": ...} | {"ok": false, "error": "...", "traceback": "..."}
"""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import json
import logging
import os
from pathlib import Path
import traceback
from typing import Any
import uuid

from ..models import SettingDefinition

logger = logging.getLogger(__name__)


class RemoteCallError(Exception):
    """A call failed on the host side (handler raised or returned junk)."""

    def __init__(self, detail: str, remote_traceback: str | None = None):
        self.detail = detail
        self.remote_traceback = remote_traceback
        super().__init__(detail)


def encode_call(op: str, args: dict[str, Any]) -> bytes:
    """Serialize one call. Raises TypeError/ValueError if args are not JSON data."""
    return json.dumps({"op": op, "args": args}, allow_nan=False).encode("utf-8")


def decode_reply(data: bytes) -> Any:
    """Deserialize a reply, raising RemoteCallError for failed calls."""
    try:
        reply = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RemoteCallError(f"malformed reply from handler runtime: {e}") from None
    if not isinstance(reply, dict) or "ok" not in reply:
        raise RemoteCallError("malformed reply from handler runtime")
    if not reply["ok"]:
        raise RemoteCallError(str(reply.get("error", "unknown error")), reply.get("traceback"))
    return reply.get("result")


def _module_name_for(path: Path) -> str:
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:10]
    return f"tersh_local_{path.stem}_{digest}"


def load_factory(target: str) -> Any:
    """
    Load a handler factory from a target string.

    Targets look like "package.module:attr" or "/path/to/file.py:attr".
    A class attribute is instantiated with no arguments.
    """
    module_part, sep, attr = target.rpartition(":")
    if not sep or not module_part or not attr:
        raise ValueError(f"invalid factory target {target!r} (expected 'module:attr')")

    if module_part.endswith(".py") or os.sep in module_part or "/" in module_part:
        path = Path(module_part).expanduser().resolve()
        if not path.is_file():
            raise FileNotFoundError(f"handler module not found: {path}")
        spec = importlib.util.spec_from_file_location(_module_name_for(path), path)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot load handler module: {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    else:
        module = importlib.import_module(module_part)

    try:
        factory = getattr(module, attr)
    except AttributeError:
        raise AttributeError(f"{module_part} has no attribute {attr!r}") from None
    if isinstance(factory, type):
        factory = factory()
    for method in ("matches", "create"):
        if not callable(getattr(factory, method, None)):
            raise TypeError(f"{target} is not a handler factory (missing {method}())")
    return factory


def _payload(value: Any) -> Any:
    """Turn a handler's return value into plain JSON data."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value


def _schema_payload(schema: Any) -> dict[str, Any]:
    if schema is None:
        return {}
    if not isinstance(schema, dict):
        raise TypeError(f"settings schema must be a mapping, got {type(schema).__name__}")
    out: dict[str, Any] = {}
    for name, definition in schema.items():
        if not isinstance(definition, SettingDefinition):
            definition = SettingDefinition.from_dict(definition)
        out[str(name)] = definition.to_dict()
    return out


class _Slot:
    """A live handler instance plus the call-order bookkeeping."""

    def __init__(self, handler: Any):
        self.handler = handler
        self.prepared = False
        self.summarized = False


class HandlerHost:
    """Loads factories and answers serialized calls against them."""

    def __init__(self) -> None:
        self._factories: dict[str, Any] = {}
        self._instances: dict[str, _Slot] = {}

    def factory(self, target: str) -> Any:
        if target not in self._factories:
            self._factories[target] = load_factory(target)
        return self._factories[target]

    def _slot(self, instance_id: str) -> _Slot:
        slot = self._instances.get(instance_id)
        if slot is None:
            raise KeyError(f"unknown handler instance: {instance_id}")
        return slot

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def op_settings_schema(self, target: str) -> dict[str, Any]:
        factory = self.factory(target)
        describe = getattr(factory, "settings_schema", None)
        return _schema_payload(describe() if callable(describe) else {})

    def op_matches(self, target: str, command: str) -> bool:
        result = self.factory(target).matches(command)
        if not isinstance(result, bool):
            raise TypeError(f"matches() must return a bool, got {type(result).__name__}")
        return result

    def op_create(self, target: str, command: Any, settings: dict[str, Any]) -> str:
        handler = self.factory(target).create(command, settings)
        if not callable(getattr(handler, "summarize", None)):
            raise TypeError("create() must return an object with summarize()")
        instance_id = f"h_{uuid.uuid4().hex[:12]}"
        self._instances[instance_id] = _Slot(handler)
        return instance_id

    def op_prepare(self, instance: str) -> Any:
        slot = self._slot(instance)
        if slot.prepared:
            raise RuntimeError("prepare() was already called on this instance")
        if slot.summarized:
            raise RuntimeError("prepare() called after summarize()")
        slot.prepared = True
        prepare = getattr(slot.handler, "prepare", None)
        if not callable(prepare):
            raise TypeError("handler instance has no prepare()")
        return _payload(prepare())

    def op_summarize(
        self,
        instance: str,
        stdout: str,
        stderr: str,
        exit_code: int | None,
    ) -> Any:
        slot = self._slot(instance)
        slot.summarized = True
        return _payload(slot.handler.summarize(stdout, stderr, exit_code))

    def op_release(self, instance: str) -> None:
        self._instances.pop(instance, None)

    # -------------------------------------------------------------------------
    # Wire entry point
    # -------------------------------------------------------------------------

    def handle(self, message: bytes) -> bytes:
        """Answer one serialized call. Never raises."""
        try:
            call = json.loads(message.decode("utf-8"))
            op = call["op"]
            method = getattr(self, f"op_{op}", None)
            if method is None:
                raise ValueError(f"unknown operation: {op!r}")
            result = method(**call.get("args", {}))
            return json.dumps({"ok": True, "result": result}, allow_nan=False).encode("utf-8")
        except Exception as e:
            logger.debug("handler call failed: %s", e, exc_info=True)
            return json.dumps(
                {
                    "ok": False,
                    "error": f"{type(e).__name__}: {e}",
                    "traceback": traceback.format_exc(),
                }
            ).encode("utf-8")
