"""tersh configuration loader - reads tersh.toml with ENV overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
import tomllib
from typing import Any

CONFIG_FILENAME = "tersh.toml"

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class RuntimeConfig:
    """Handler runtime settings."""

    backend: str = "process"  # "process" | "thread"
    handler_timeout: float = 10.0

    def validate(self) -> None:
        if self.backend not in ("process", "thread"):
            raise ValueError(f"Invalid runtime backend: {self.backend}")
        if self.handler_timeout <= 0:
            raise ValueError("handler_timeout must be positive")


@dataclass
class ExecutionConfig:
    """Command execution settings."""

    command_timeout: float | None = None  # None = no limit
    max_summary_chars: int = 10_000
    strict_settings: bool = True
    read_chunk_size: int = 8192

    def validate(self) -> None:
        if self.command_timeout is not None and self.command_timeout <= 0:
            raise ValueError("command_timeout must be positive")
        if self.max_summary_chars <= 0:
            raise ValueError("max_summary_chars must be positive")
        if self.read_chunk_size <= 0:
            raise ValueError("read_chunk_size must be positive")


@dataclass
class DiscoveryConfig:
    """Local handler discovery."""

    enabled: bool = True

    def validate(self) -> None:
        pass


@dataclass
class LoggingConfig:
    level: str = "warning"
    format: str = "text"  # "text" | "json"

    def validate(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {self.level}")
        if self.format not in ("text", "json"):
            raise ValueError(f"Invalid log format: {self.format}")


@dataclass
class TershConfig:
    """Root configuration."""

    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: Path | None = None  # file the values came from, if any

    def validate(self) -> None:
        self.runtime.validate()
        self.execution.validate()
        self.discovery.validate()
        self.logging.validate()


def find_repo_root(start: Path | None = None) -> Path:
    """Walk up from start looking for .tersh/ or .git/; fall back to start."""
    current = (start or Path.cwd()).resolve()
    for candidate in [current, *current.parents]:
        if (candidate / ".tersh").is_dir() or (candidate / ".git").exists():
            return candidate
    return current


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _apply_env_overrides(cfg: TershConfig) -> TershConfig:
    """Apply environment variable overrides. ENV beats TOML."""
    if os.getenv("TERSH_RUNTIME"):
        cfg.runtime.backend = os.getenv("TERSH_RUNTIME", cfg.runtime.backend).lower()

    handler_timeout = _env_float("TERSH_HANDLER_TIMEOUT")
    if handler_timeout is not None:
        cfg.runtime.handler_timeout = handler_timeout

    command_timeout = _env_float("TERSH_COMMAND_TIMEOUT")
    if command_timeout is not None:
        cfg.execution.command_timeout = command_timeout

    if os.getenv("TERSH_STRICT_SETTINGS"):
        cfg.execution.strict_settings = os.getenv("TERSH_STRICT_SETTINGS", "").lower() in _TRUTHY

    if os.getenv("TERSH_LOG_LEVEL"):
        cfg.logging.level = os.getenv("TERSH_LOG_LEVEL", cfg.logging.level).lower()
    if os.getenv("TERSH_LOG_FORMAT"):
        cfg.logging.format = os.getenv("TERSH_LOG_FORMAT", cfg.logging.format).lower()

    return cfg


def _table(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"[{name}] must be a table, got {type(section).__name__}")
    return section


def _value(section: dict[str, Any], table: str, key: str, kinds: tuple[type, ...], default: Any) -> Any:
    """Fetch one TOML value; a bool never counts as a number."""
    if key not in section:
        return default
    value = section[key]
    if not isinstance(value, kinds) or (isinstance(value, bool) and bool not in kinds):
        expected = " or ".join(k.__name__ for k in kinds)
        raise ValueError(f"{table}.{key} must be {expected}, got {value!r}")
    return value


def _apply_toml(cfg: TershConfig, data: dict[str, Any]) -> None:
    runtime = _table(data, "runtime")
    cfg.runtime.backend = _value(runtime, "runtime", "backend", (str,), cfg.runtime.backend)
    cfg.runtime.handler_timeout = _value(
        runtime, "runtime", "handler_timeout", (int, float), cfg.runtime.handler_timeout
    )

    execution = _table(data, "execution")
    cfg.execution.command_timeout = _value(
        execution, "execution", "command_timeout", (int, float), cfg.execution.command_timeout
    )
    cfg.execution.max_summary_chars = _value(
        execution, "execution", "max_summary_chars", (int,), cfg.execution.max_summary_chars
    )
    cfg.execution.strict_settings = _value(
        execution, "execution", "strict_settings", (bool,), cfg.execution.strict_settings
    )
    cfg.execution.read_chunk_size = _value(
        execution, "execution", "read_chunk_size", (int,), cfg.execution.read_chunk_size
    )

    discovery = _table(data, "discovery")
    cfg.discovery.enabled = _value(discovery, "discovery", "enabled", (bool,), cfg.discovery.enabled)

    log = _table(data, "logging")
    cfg.logging.level = _value(log, "logging", "level", (str,), cfg.logging.level)
    cfg.logging.format = _value(log, "logging", "format", (str,), cfg.logging.format)


def load_config(
    start: Path | None = None,
    config_path: str | Path | None = None,
) -> TershConfig:
    """
    Load tersh config from tersh.toml with ENV overrides.

    Precedence: ENV → TOML → defaults

    Args:
        start: Directory to search from (default: cwd)
        config_path: Explicit path to tersh.toml. If None, searches:
            1. TERSH_CONFIG env var
            2. <repo root>/tersh.toml

    Returns:
        Validated TershConfig.

    Raises:
        ValueError: a value is out of range or the TOML is malformed
    """
    if config_path is None:
        if os.getenv("TERSH_CONFIG"):
            config_path = Path(os.environ["TERSH_CONFIG"])
        else:
            config_path = find_repo_root(start) / CONFIG_FILENAME
    else:
        config_path = Path(config_path)

    cfg = TershConfig()

    if config_path.is_file():
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e
        _apply_toml(cfg, data)
        cfg.source = config_path

    cfg = _apply_env_overrides(cfg)
    cfg.validate()
    return cfg
