"""
Data model shared by handlers, the runtime bridge and the orchestrator.

Everything that crosses the handler runtime boundary has to_dict/from_dict so
it can travel as JSON. from_dict raises ValueError on a malformed shape; the
bridge turns that into a HandlerFault.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import shlex
from typing import Any, Literal

SettingType = Literal["boolean", "string", "number"]
TruncationReason = Literal["filtered_noise", "content_too_large", "filtered_duplicates"]

SETTING_TYPES: tuple[str, ...] = ("boolean", "string", "number")
TRUNCATION_REASONS: tuple[str, ...] = (
    "filtered_noise",
    "content_too_large",
    "filtered_duplicates",
)

Command = str | list[str]


def command_text(command: Command) -> str:
    """Render a command (string or argv) as the single string handlers match on."""
    if isinstance(command, str):
        return command
    return shlex.join(command)


def _check_command(value: Any) -> Command:
    if isinstance(value, str):
        return value
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ValueError(f"command must be a string or a list of strings, got {value!r}")


@dataclass(frozen=True)
class SettingDefinition:
    """One entry of a handler's settings schema."""

    type: SettingType
    default: Any = None
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "default": self.default, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SettingDefinition:
        if not isinstance(data, dict):
            raise ValueError(f"setting definition must be a mapping, got {data!r}")
        kind = data.get("type")
        if kind not in SETTING_TYPES:
            raise ValueError(f"unknown setting type {kind!r} (expected one of {SETTING_TYPES})")
        return cls(
            type=kind,
            default=data.get("default"),
            description=str(data.get("description", "")),
        )


SettingsSchema = dict[str, SettingDefinition]


def schema_to_dict(schema: SettingsSchema) -> dict[str, Any]:
    return {name: definition.to_dict() for name, definition in schema.items()}


def schema_from_dict(data: Any) -> SettingsSchema:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"settings schema must be a mapping, got {type(data).__name__}")
    return {str(name): SettingDefinition.from_dict(value) for name, value in data.items()}


@dataclass(frozen=True)
class PrepareResult:
    """Command and environment overrides produced by prepare()."""

    command: Command
    env: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        command = list(self.command) if isinstance(self.command, list) else self.command
        return {"command": command, "env": dict(self.env)}

    @classmethod
    def from_dict(cls, data: Any) -> PrepareResult:
        if not isinstance(data, dict):
            raise ValueError(f"prepare result must be a mapping, got {data!r}")
        command = _check_command(data.get("command"))
        env = data.get("env") or {}
        if not isinstance(env, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in env.items()
        ):
            raise ValueError(f"prepare env must map strings to strings, got {env!r}")
        return cls(command=command, env=dict(env))


@dataclass(frozen=True)
class TruncationInfo:
    """What a summary left out, and why."""

    truncated: bool = True
    reason: TruncationReason | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        d: dict[str, Any] = {"truncated": self.truncated}
        if self.reason is not None:
            d["reason"] = self.reason
        if self.description is not None:
            d["description"] = self.description
        return d

    @classmethod
    def from_dict(cls, data: Any) -> TruncationInfo:
        if not isinstance(data, dict):
            raise ValueError(f"truncation info must be a mapping, got {data!r}")
        reason = data.get("reason")
        if reason is not None and reason not in TRUNCATION_REASONS:
            raise ValueError(f"unknown truncation reason {reason!r}")
        description = data.get("description")
        return cls(
            truncated=bool(data.get("truncated", True)),
            reason=reason,
            description=None if description is None else str(description),
        )


@dataclass(frozen=True)
class SummaryResult:
    """Result of one summarize() call. summary=None means keep buffering."""

    summary: str | None = None
    truncation: TruncationInfo | None = None

    @property
    def decided(self) -> bool:
        return self.summary is not None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"summary": self.summary}
        if self.truncation is not None:
            d["truncation"] = self.truncation.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: Any) -> SummaryResult:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"summary result must be a mapping, got {data!r}")
        summary = data.get("summary")
        if summary is not None and not isinstance(summary, str):
            raise ValueError(f"summary must be a string or null, got {type(summary).__name__}")
        truncation = data.get("truncation")
        return cls(
            summary=summary,
            truncation=None if truncation is None else TruncationInfo.from_dict(truncation),
        )


@dataclass
class ExecuteRequest:
    """A caller's request to run one command."""

    command: Command
    working_dir: Path = field(default_factory=Path.cwd)
    exact: bool = False
    settings: dict[str, Any] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    # Opt-in: on timeout, summarize whatever was read instead of failing.
    partial_on_timeout: bool = False

    @property
    def command_text(self) -> str:
        return command_text(self.command)


@dataclass
class ExecutedCommand:
    """What was actually run, after prepare()."""

    command: Command
    env_overrides: dict[str, str]
    working_dir: Path

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "env_overrides": dict(self.env_overrides),
            "working_dir": str(self.working_dir),
        }


@dataclass
class ExecuteResult:
    """Final outcome of one execution."""

    summary: str
    exit_code: int
    executed: ExecutedCommand
    truncation: TruncationInfo | None = None
    handler: str | None = None
    diagnostics: list[str] = field(default_factory=list)
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def truncated(self) -> bool:
        return self.truncation is not None and self.truncation.truncated

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "exit_code": self.exit_code,
            "truncated": self.truncated,
            "truncation": None if self.truncation is None else self.truncation.to_dict(),
            "handler": self.handler,
            "executed_command": self.executed.to_dict(),
            "diagnostics": list(self.diagnostics),
            "timed_out": self.timed_out,
            "duration_ms": self.duration_ms,
        }
