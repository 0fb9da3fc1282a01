"""
Settings resolver.

Merges caller-supplied settings with a handler's declared schema. The result
always holds every schema key and nothing else.

Policy for a value of the wrong type is explicit: strict mode raises
SettingsTypeError, lenient mode logs a warning and falls back to the default.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any

from .errors import SettingsTypeError
from .models import SettingsSchema

logger = logging.getLogger(__name__)


def _type_matches(expected: str, value: Any) -> bool:
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        # bool is an int subclass; True is not a number here
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return False


def resolve_settings(
    supplied: Mapping[str, Any] | None,
    schema: SettingsSchema,
    *,
    strict: bool = True,
) -> dict[str, Any]:
    """
    Produce the effective settings map for one handler.

    Args:
        supplied: Caller settings (may be partial, empty or None)
        schema: The handler's declared settings schema
        strict: Raise on a type mismatch instead of using the default

    Returns:
        Mapping with exactly the schema's keys

    Raises:
        SettingsTypeError: strict mode and a value has the wrong type
    """
    supplied = supplied or {}

    unknown = sorted(set(supplied) - set(schema))
    if unknown:
        logger.debug("ignoring unknown settings: %s", ", ".join(unknown))

    resolved: dict[str, Any] = {}
    for key, definition in schema.items():
        value = supplied.get(key)
        if value is None:
            resolved[key] = definition.default
            continue
        if _type_matches(definition.type, value):
            resolved[key] = value
            continue
        if strict:
            raise SettingsTypeError(key, definition.type, value)
        logger.warning(
            "setting %r expects %s, got %r; using default %r",
            key,
            definition.type,
            value,
            definition.default,
        )
        resolved[key] = definition.default
    return resolved
