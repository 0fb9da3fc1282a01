"""
Built-in handlers.

Each handler implements the HandlerFactory contract:
- matches(): does this handler own the command?
- create(): fresh instance per execution
- settings_schema(): declared settings with types and defaults

Built-ins are referenced by import path and loaded by the handler runtime,
the same way local handlers are.
"""

from __future__ import annotations

from pathlib import Path

from ..registry import FactoryRef

BUILTIN_HANDLERS: tuple[FactoryRef, ...] = (
    FactoryRef(name="cargo", target="tersh.handlers.cargo:CargoHandlerFactory"),
)

# Recorded fixtures for the built-ins, one directory per handler
BUILTIN_FIXTURES = Path(__file__).parent / "fixtures"

__all__ = ["BUILTIN_FIXTURES", "BUILTIN_HANDLERS"]
