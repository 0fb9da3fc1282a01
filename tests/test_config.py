"""Config loading: defaults, tersh.toml, ENV overrides, validation."""

from __future__ import annotations

import pytest

from tersh.config import TershConfig, find_repo_root, load_config


def test_defaults_without_file(tmp_path):
    cfg = load_config(tmp_path)
    assert cfg.runtime.backend == "process"
    assert cfg.runtime.handler_timeout == 10.0
    assert cfg.execution.command_timeout is None
    assert cfg.execution.max_summary_chars == 10_000
    assert cfg.execution.strict_settings is True
    assert cfg.discovery.enabled is True
    assert cfg.source is None


def test_reads_toml_at_repo_root(tmp_path):
    (tmp_path / ".git").mkdir()
    (tmp_path / "tersh.toml").write_text(
        "[runtime]\n"
        'backend = "thread"\n'
        "handler_timeout = 2.5\n"
        "[execution]\n"
        "command_timeout = 60\n"
        "strict_settings = false\n"
        "[logging]\n"
        'format = "json"\n'
    )
    nested = tmp_path / "src" / "deep"
    nested.mkdir(parents=True)

    cfg = load_config(nested)
    assert cfg.runtime.backend == "thread"
    assert cfg.runtime.handler_timeout == 2.5
    assert cfg.execution.command_timeout == 60
    assert cfg.execution.strict_settings is False
    assert cfg.logging.format == "json"
    assert cfg.source == (tmp_path / "tersh.toml").resolve()


def test_env_beats_toml(tmp_path, monkeypatch):
    (tmp_path / "tersh.toml").write_text('[runtime]\nbackend = "process"\n')
    monkeypatch.setenv("TERSH_RUNTIME", "thread")
    monkeypatch.setenv("TERSH_COMMAND_TIMEOUT", "12")
    monkeypatch.setenv("TERSH_LOG_LEVEL", "DEBUG")

    cfg = load_config(tmp_path)
    assert cfg.runtime.backend == "thread"
    assert cfg.execution.command_timeout == 12.0
    assert cfg.logging.level == "debug"


def test_explicit_config_env_var(tmp_path, monkeypatch):
    custom = tmp_path / "elsewhere.toml"
    custom.write_text("[execution]\nmax_summary_chars = 500\n")
    monkeypatch.setenv("TERSH_CONFIG", str(custom))
    assert load_config(tmp_path).execution.max_summary_chars == 500


def test_invalid_backend_rejected(tmp_path):
    (tmp_path / "tersh.toml").write_text('[runtime]\nbackend = "docker"\n')
    with pytest.raises(ValueError, match="backend"):
        load_config(tmp_path)


def test_invalid_env_number_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("TERSH_HANDLER_TIMEOUT", "soon")
    with pytest.raises(ValueError, match="TERSH_HANDLER_TIMEOUT"):
        load_config(tmp_path)


def test_malformed_toml_rejected(tmp_path):
    (tmp_path / "tersh.toml").write_text("[runtime\n")
    with pytest.raises(ValueError, match="Invalid TOML"):
        load_config(tmp_path)


def test_validate_catches_bad_values():
    cfg = TershConfig()
    cfg.execution.max_summary_chars = 0
    with pytest.raises(ValueError):
        cfg.validate()


def test_find_repo_root(tmp_path):
    (tmp_path / ".tersh").mkdir()
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert find_repo_root(nested) == tmp_path.resolve()


@pytest.mark.parametrize(
    "body, match",
    [
        ('[runtime]\nhandler_timeout = "10"\n', "runtime.handler_timeout"),
        ("[execution]\nmax_summary_chars = 1.5\n", "execution.max_summary_chars"),
        ("[execution]\ncommand_timeout = true\n", "execution.command_timeout"),
        ('[discovery]\nenabled = "yes"\n', "discovery.enabled"),
        ("runtime = 3\n", r"\[runtime\] must be a table"),
    ],
)
def test_wrong_toml_types_rejected(tmp_path, body, match):
    (tmp_path / "tersh.toml").write_text(body)
    with pytest.raises(ValueError, match=match):
        load_config(tmp_path)
