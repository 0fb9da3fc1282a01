"""
Handler registry: ordered factory references, first match wins.

The registry is assembled once from local and built-in sources and never
mutated afterwards, so one instance can be shared by concurrent executions.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from functools import lru_cache
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from .errors import HandlerFault

if TYPE_CHECKING:
    from .runtime.interface import HandlerRuntime

logger = logging.getLogger(__name__)

Origin = Literal["builtin", "local"]


@dataclass(frozen=True)
class FactoryRef:
    """Where a handler factory lives and what it is called."""

    name: str
    target: str  # "package.module:attr" or "/path/file.py:attr"
    origin: Origin = "builtin"


class HandlerRegistry:
    """Immutable, ordered list of handler factories."""

    def __init__(self, refs: Iterable[FactoryRef] = ()):
        refs = tuple(refs)
        seen: set[str] = set()
        for ref in refs:
            if ref.name in seen:
                raise ValueError(f"duplicate handler name in registry: {ref.name}")
            seen.add(ref.name)
        self._refs = refs

    @classmethod
    def assemble(
        cls,
        local: Sequence[FactoryRef],
        builtin: Sequence[FactoryRef],
    ) -> HandlerRegistry:
        """
        Build the registry with local handlers ahead of built-ins.

        A local handler replaces the built-in with the same name. Among local
        handlers the first occurrence of a name wins (callers pass the nearest
        directory first).
        """
        ordered: list[FactoryRef] = []
        names: set[str] = set()
        for ref in local:
            if ref.name in names:
                logger.debug("shadowed local handler %s (%s)", ref.name, ref.target)
                continue
            names.add(ref.name)
            ordered.append(ref)
        for ref in builtin:
            if ref.name in names:
                logger.debug("local handler overrides built-in %s", ref.name)
                continue
            names.add(ref.name)
            ordered.append(ref)
        return cls(ordered)

    @property
    def refs(self) -> tuple[FactoryRef, ...]:
        return self._refs

    def get(self, name: str) -> FactoryRef | None:
        for ref in self._refs:
            if ref.name == name:
                return ref
        return None

    def names(self) -> list[str]:
        return [ref.name for ref in self._refs]

    def __iter__(self) -> Iterator[FactoryRef]:
        return iter(self._refs)

    def __len__(self) -> int:
        return len(self._refs)

    async def resolve(self, command: str, runtime: HandlerRuntime) -> FactoryRef | None:
        """
        Return the first factory whose matches() accepts the command.

        None means no handler: the command runs unmodified and its raw output
        is passed through. A factory whose matches() faults is skipped.
        """
        for ref in self._refs:
            try:
                if await runtime.matches(ref, command):
                    logger.debug("handler %s matched %r", ref.name, command)
                    return ref
            except HandlerFault as e:
                logger.warning("skipping handler %s: %s", ref.name, e)
        logger.debug("no handler matched %r", command)
        return None


@lru_cache(maxsize=None)
def _default_registry(start: Path, discover: bool) -> HandlerRegistry:
    from .discovery import builtin_handlers, discover_handlers

    local = discover_handlers(start) if discover else []
    return HandlerRegistry.assemble(local, builtin_handlers())


def default_registry(start: Path | None = None, discover: bool = True) -> HandlerRegistry:
    """The process-wide registry for a working directory, built on first use."""
    return _default_registry((start or Path.cwd()).resolve(), discover)
