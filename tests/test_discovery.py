"""Local handler and fixture discovery."""

from __future__ import annotations

from pathlib import Path

from tersh.discovery import (
    builtin_handlers,
    discover_handlers,
    fixture_dirs,
    handlers_with_fixtures,
    search_dirs,
)
from tersh.handlers import BUILTIN_FIXTURES


def test_search_dirs_nearest_first_and_home_last(tmp_path):
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    dirs = search_dirs(nested)
    assert dirs[0] == nested.resolve()
    assert dirs[1] == (tmp_path / "a").resolve()
    assert dirs[-1] == Path.home().resolve()


def test_discovers_handlers_in_ancestors(tmp_path, install_handler):
    project = tmp_path / "project"
    (project / "src").mkdir(parents=True)
    install_handler("silent", name="make", root=tmp_path)
    install_handler("recorder", name="npm", root=project)

    refs = discover_handlers(project / "src")
    assert [r.name for r in refs] == ["npm", "make"]
    assert all(r.origin == "local" for r in refs)


def test_nearest_directory_wins(tmp_path, install_handler):
    project = tmp_path / "project"
    project.mkdir()
    outer = install_handler("silent", name="cargo", root=tmp_path)
    inner = install_handler("recorder", name="cargo", root=project)

    refs = discover_handlers(project)
    assert len(refs) == 1
    assert refs[0].target == f"{inner.resolve()}:factory"
    assert str(outer) not in refs[0].target


def test_home_directory_is_searched(tmp_path, install_handler):
    install_handler("silent", name="global", root=Path.home())
    assert "global" in [r.name for r in discover_handlers(tmp_path)]


def test_private_modules_are_skipped(tmp_path, install_handler):
    install_handler("silent", name="_helpers")
    assert discover_handlers(tmp_path) == []


def test_builtin_handlers():
    assert [r.name for r in builtin_handlers()] == ["cargo"]


def test_fixture_dirs_fall_back_to_builtin(tmp_path):
    assert fixture_dirs("cargo", tmp_path) == [BUILTIN_FIXTURES / "cargo"]
    assert fixture_dirs("nothing", tmp_path) == []


def test_local_fixture_dirs_win(tmp_path):
    local = tmp_path / ".tersh" / "tests" / "cargo"
    local.mkdir(parents=True)
    assert fixture_dirs("cargo", tmp_path) == [local.resolve()]


def test_handlers_with_fixtures(tmp_path):
    assert handlers_with_fixtures(tmp_path) == ["cargo"]
    (tmp_path / ".tersh" / "tests" / "make").mkdir(parents=True)
    assert handlers_with_fixtures(tmp_path) == ["make"]
