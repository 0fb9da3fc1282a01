"""
Handler and fixture discovery.

Local handlers live in `.tersh/handlers/<name>.py` in the working directory or
any ancestor up to the home directory, plus `~/.tersh/handlers`. The file stem
is the handler name; the module's `factory` attribute is the factory. Nearer
directories win over farther ones, and any local handler wins over the
built-in of the same name.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .handlers import BUILTIN_FIXTURES, BUILTIN_HANDLERS
from .registry import FactoryRef

logger = logging.getLogger(__name__)

TERSH_DIR = ".tersh"
HANDLERS_DIR = "handlers"
TESTS_DIR = "tests"
FACTORY_ATTR = "factory"


def search_dirs(start: Path | None = None) -> list[Path]:
    """
    Directories that may hold a `.tersh/` folder, nearest first.

    Walks from `start` up to the home directory (inclusive) or the filesystem
    root, then appends the home directory if the walk did not pass it.
    """
    start = (start or Path.cwd()).resolve()
    home = Path.home().resolve()
    dirs: list[Path] = []
    for ancestor in [start, *start.parents]:
        dirs.append(ancestor)
        if ancestor == home:
            break
    if home not in dirs:
        dirs.append(home)
    return dirs


def discover_handlers(start: Path | None = None) -> list[FactoryRef]:
    """Collect local handler modules, nearest directory first."""
    refs: list[FactoryRef] = []
    seen: set[str] = set()
    for directory in search_dirs(start):
        handler_dir = directory / TERSH_DIR / HANDLERS_DIR
        if not handler_dir.is_dir():
            continue
        for path in sorted(handler_dir.glob("*.py")):
            if path.stem.startswith("_") or path.stem in seen:
                continue
            seen.add(path.stem)
            refs.append(
                FactoryRef(name=path.stem, target=f"{path}:{FACTORY_ATTR}", origin="local")
            )
            logger.debug("found local handler %s at %s", path.stem, path)
    return refs


def builtin_handlers() -> list[FactoryRef]:
    """Handlers shipped with tersh."""
    return list(BUILTIN_HANDLERS)


def fixture_dirs(handler_name: str, start: Path | None = None) -> list[Path]:
    """
    Fixture directories for a handler.

    Local `.tersh/tests/<name>/` directories are used when any exist;
    otherwise the packaged fixtures for a built-in handler.
    """
    local = [
        directory / TERSH_DIR / TESTS_DIR / handler_name
        for directory in search_dirs(start)
        if (directory / TERSH_DIR / TESTS_DIR / handler_name).is_dir()
    ]
    if local:
        return local
    builtin = BUILTIN_FIXTURES / handler_name
    return [builtin] if builtin.is_dir() else []


def handlers_with_fixtures(start: Path | None = None) -> list[str]:
    """Names of all handlers that have at least one fixture directory."""
    names: set[str] = set()
    for directory in search_dirs(start):
        tests_dir = directory / TERSH_DIR / TESTS_DIR
        if tests_dir.is_dir():
            names.update(p.name for p in tests_dir.iterdir() if p.is_dir())
    if not names and BUILTIN_FIXTURES.is_dir():
        names.update(p.name for p in BUILTIN_FIXTURES.iterdir() if p.is_dir())
    return sorted(names)
