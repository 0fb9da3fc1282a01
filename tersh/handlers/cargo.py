"""
Cargo handler.

Quiets cargo down before it runs, then keeps only what an agent needs from
the build output: error blocks, the final "could not compile" / "aborting due
to" lines, and warning blocks when asked for.
"""

from __future__ import annotations

import re
from typing import Any

from ..handler import BufferedHandler, HandlerFactory
from ..models import Command, PrepareResult, SettingDefinition, SettingsSchema, SummaryResult, TruncationInfo

ERROR_LINE = re.compile(r"^error(\[E\d+\])?:")
WARNING_LINE = re.compile(r"^warning:")
FINAL_LINE_MARKERS = ("could not compile", "aborting due to")


def _add_quiet(command: Command) -> Command:
    """Insert --quiet right after `cargo` unless --quiet or -q is already given."""
    tokens = command if isinstance(command, list) else command.split()
    if "--quiet" in tokens or "-q" in tokens[1:]:
        return list(command) if isinstance(command, list) else command
    if isinstance(command, list):
        return [command[0], "--quiet", *command[1:]]
    return re.sub(r"^(\s*cargo)\s+", r"\1 --quiet ", command, count=1)


class CargoHandler(BufferedHandler):
    """Summarizes one cargo invocation."""

    def prepare(self) -> PrepareResult:
        command = self.command
        if self.settings.get("quiet", True):
            command = _add_quiet(command)

        env: dict[str, str] = {}
        rust_log = self.settings.get("RUST_LOG")
        if rust_log:
            env["RUST_LOG"] = rust_log

        return PrepareResult(command=command, env=env)

    def finalize(self, exit_code: int) -> SummaryResult:
        show_warnings = bool(self.settings.get("show_warnings", False))

        kept: list[str] = []
        block: str | None = None  # "error" | "warning" | None
        has_errors = False
        filtered_warnings = 0

        for line in self.stderr.split("\n"):
            if ERROR_LINE.match(line):
                block = "error"
                has_errors = True
                kept.append(line)
                continue

            if WARNING_LINE.match(line):
                block = "warning"
                if show_warnings:
                    kept.append(line)
                else:
                    filtered_warnings += 1
                continue

            # A blank line or the rustc --explain hint closes the block
            if not line.strip() or line.startswith("For more information"):
                block = None
                continue

            if block == "error" or (block == "warning" and show_warnings):
                kept.append(line)
                continue

            if any(marker in line for marker in FINAL_LINE_MARKERS):
                kept.append(line)

        truncation = None
        if filtered_warnings:
            truncation = TruncationInfo(
                truncated=True,
                reason="filtered_noise",
                description=(
                    f"Filtered {filtered_warnings} warning(s) - "
                    "use show_warnings: true to include them"
                ),
            )

        if exit_code == 0 and not has_errors:
            if kept:
                summary = "Build succeeded\n\n" + "\n".join(kept)
            else:
                summary = "Build succeeded"
            return SummaryResult(summary=summary, truncation=truncation)

        summary = "\n".join(kept) if kept else "Build failed"
        return SummaryResult(summary=summary, truncation=truncation)


class CargoHandlerFactory(HandlerFactory):
    """Claims every command whose program is `cargo`."""

    name = "cargo"

    def matches(self, command: str) -> bool:
        parts = command.split()
        return bool(parts) and parts[0] == "cargo"

    def create(self, command: Command, settings: dict[str, Any]) -> CargoHandler:
        return CargoHandler(command, settings)

    def settings_schema(self) -> SettingsSchema:
        return {
            "quiet": SettingDefinition(
                type="boolean",
                default=True,
                description="Add --quiet flag to reduce output noise",
            ),
            "show_warnings": SettingDefinition(
                type="boolean",
                default=False,
                description="Include warnings in the summary (default: only errors)",
            ),
            "RUST_LOG": SettingDefinition(
                type="string",
                default=None,
                description="Set RUST_LOG environment variable for logging",
            ),
        }
