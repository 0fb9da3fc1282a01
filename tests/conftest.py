import logging
from pathlib import Path
import shutil

from _pytest.monkeypatch import MonkeyPatch
import pytest

from tersh.registry import FactoryRef, HandlerRegistry, _default_registry
from tersh.runtime import ThreadRuntime

HANDLERS_DIR = Path(__file__).resolve().parent / "fixtures" / "handlers"

TERSH_ENV_VARS = (
    "TERSH_CONFIG",
    "TERSH_RUNTIME",
    "TERSH_HANDLER_TIMEOUT",
    "TERSH_COMMAND_TIMEOUT",
    "TERSH_STRICT_SETTINGS",
    "TERSH_LOG_LEVEL",
    "TERSH_LOG_FORMAT",
)


def sample_ref(name: str) -> FactoryRef:
    """FactoryRef for one of the sample handlers in tests/fixtures/handlers."""
    return FactoryRef(name=name, target=f"{HANDLERS_DIR / name}.py:factory", origin="local")


def sample_registry(*names: str) -> HandlerRegistry:
    return HandlerRegistry(sample_ref(name) for name in names)


@pytest.fixture(scope="session", autouse=True)
def _session_env(tmp_path_factory: pytest.TempPathFactory) -> None:
    """
    Session-level hermetic env that does not depend on the function-scoped
    `monkeypatch` fixture (avoids ScopeMismatch).
    """
    home = tmp_path_factory.mktemp("home")
    mp = MonkeyPatch()
    mp.setenv("HOME", str(home))
    try:
        yield
    finally:
        mp.undo()


@pytest.fixture(autouse=True)
def hermetic_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Autouse: each test runs in its own tmp cwd and HOME with no TERSH_*
    overrides, and XDG dirs stay inside tmp.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / ".cache"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / ".config"))
    for name in TERSH_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    _default_registry.cache_clear()
    yield tmp_path
    # The CLI attaches a stderr handler bound to the runner's stream
    tersh_logger = logging.getLogger("tersh")
    tersh_logger.handlers.clear()
    tersh_logger.setLevel(logging.NOTSET)


@pytest.fixture
def runtime() -> ThreadRuntime:
    """In-process runtime; fast enough for most tests."""
    return ThreadRuntime(timeout=5.0)


@pytest.fixture
def install_handler(tmp_path: Path):
    """Copy a sample handler into <dir>/.tersh/handlers/ under a chosen name."""

    def _install(sample: str, name: str | None = None, root: Path | None = None) -> Path:
        target_dir = (root or tmp_path) / ".tersh" / "handlers"
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{name or sample}.py"
        shutil.copy(HANDLERS_DIR / f"{sample}.py", target)
        return target

    return _install
