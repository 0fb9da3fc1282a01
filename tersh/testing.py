"""
Handler test harness.

Fixtures are TOML files recording one run of a command:

    command = "cargo build"
    exit_code = 101
    stderr = '''...'''             # one blob, or an array of chunks
    stdout = ["chunk 1", "chunk 2"]
    expected_summary = '''...'''

    [settings]                     # optional
    show_warnings = true

    [expected_truncation]          # optional
    reason = "filtered_noise"

Each fixture is replayed through the same runtime bridge and summarization
session the executor uses, then replayed again under different chunkings of
the same output. A handler whose summary depends on chunk boundaries fails.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
import difflib
from itertools import zip_longest
import logging
from pathlib import Path
import tomllib
from typing import Any

import tomli_w

from .discovery import fixture_dirs
from .errors import HandlerFault, PrepareFailed, TershError
from .models import Command, SummaryResult, TruncationInfo
from .registry import FactoryRef, HandlerRegistry
from .runtime.interface import HandlerRuntime
from .settings import resolve_settings
from .summarizer import DEFAULT_MAX_SUMMARY_CHARS, SummarySession

logger = logging.getLogger(__name__)

FIXED_CHUNK_SIZE = 7


def _chunks(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ValueError(f"'{key}' must be a string or an array of strings")


@dataclass
class TestCase:
    """One recorded run of a command plus the summary it should produce."""

    __test__ = False  # not a pytest class

    name: str
    command: Command
    expected_summary: str
    settings: dict[str, Any] = field(default_factory=dict)
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    exit_code: int = 0
    exact: bool = False
    expected_truncation: TruncationInfo | None = None
    path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str, path: Path | None = None) -> TestCase:
        command = data.get("command")
        if not isinstance(command, (str, list)) or not command:
            raise ValueError(f"{name}: 'command' is required")
        expected = data.get("expected_summary")
        if not isinstance(expected, str):
            raise ValueError(f"{name}: 'expected_summary' is required")
        exit_code = data.get("exit_code", 0)
        if not isinstance(exit_code, int) or isinstance(exit_code, bool):
            raise ValueError(f"{name}: 'exit_code' must be an integer")
        settings = data.get("settings", {})
        if not isinstance(settings, dict):
            raise ValueError(f"{name}: 'settings' must be a table")
        truncation = data.get("expected_truncation")
        try:
            return cls(
                name=name,
                command=command,
                expected_summary=expected,
                settings=dict(settings),
                stdout=_chunks(data.get("stdout"), "stdout"),
                stderr=_chunks(data.get("stderr"), "stderr"),
                exit_code=exit_code,
                exact=bool(data.get("exact", False)),
                expected_truncation=(
                    None if truncation is None else TruncationInfo.from_dict(truncation)
                ),
                path=path,
            )
        except ValueError as e:
            raise ValueError(f"{name}: {e}") from None

    @property
    def stdout_text(self) -> str:
        return "".join(self.stdout)

    @property
    def stderr_text(self) -> str:
        return "".join(self.stderr)


def load_test_file(path: Path) -> TestCase:
    """Parse one fixture file. Raises ValueError on a malformed fixture."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"{path.name}: invalid TOML: {e}") from None
    return TestCase.from_dict(data, name=path.stem, path=path)


def find_tests(handler_name: str, start: Path | None = None) -> list[Path]:
    """Fixture files for a handler, sorted by file name."""
    paths: list[Path] = []
    for directory in fixture_dirs(handler_name, start):
        paths.extend(directory.glob("*.toml"))
    return sorted(paths, key=lambda p: p.name)


# -----------------------------------------------------------------------------
# Chunkings
# -----------------------------------------------------------------------------


def as_blob(text: str) -> list[str]:
    return [text] if text else []


def by_line(text: str) -> list[str]:
    return text.splitlines(keepends=True)


def by_size(text: str, size: int = FIXED_CHUNK_SIZE) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


CHUNKINGS = {
    "single chunk": as_blob,
    "per line": by_line,
    f"{FIXED_CHUNK_SIZE}-char chunks": by_size,
}


# -----------------------------------------------------------------------------
# Replay
# -----------------------------------------------------------------------------


async def replay(
    case: TestCase,
    ref: FactoryRef,
    runtime: HandlerRuntime,
    stdout_chunks: Iterable[str] | None = None,
    stderr_chunks: Iterable[str] | None = None,
    max_chars: int = DEFAULT_MAX_SUMMARY_CHARS,
) -> SummaryResult:
    """
    Drive a fresh handler instance with recorded output.

    Chunks default to the fixture's own chunking. Output chunks are fed in
    (stdout, stderr) pairs, then the final call carries the exit code.

    Raises:
        PrepareFailed: prepare() faulted
        HandlerFault: settings_schema() or create() faulted
        SettingsTypeError: a fixture setting has the wrong type
    """
    schema = await runtime.settings_schema(ref)
    settings = resolve_settings(case.settings, schema, strict=True)
    handle = await runtime.create(ref, case.command, settings)
    try:
        if not case.exact:
            try:
                await runtime.prepare(handle)
            except HandlerFault as e:
                raise PrepareFailed(ref.name, e) from e

        session = SummarySession(runtime, handle, max_chars=max_chars)
        out = case.stdout if stdout_chunks is None else list(stdout_chunks)
        err = case.stderr if stderr_chunks is None else list(stderr_chunks)
        for out_chunk, err_chunk in zip_longest(out, err, fillvalue=""):
            await session.feed(out_chunk, err_chunk)
        return await session.finish(case.exit_code)
    finally:
        await runtime.release(handle)


@dataclass
class CaseResult:
    """Outcome of one fixture."""

    case: TestCase
    passed: bool
    actual_summary: str | None = None
    actual_truncation: TruncationInfo | None = None
    failures: list[str] = field(default_factory=list)

    def diff(self) -> str:
        """Unified diff of expected vs actual summary (empty when they match)."""
        if self.actual_summary is None:
            return ""
        expected = self.case.expected_summary.strip().splitlines()
        actual = self.actual_summary.strip().splitlines()
        return "\n".join(
            difflib.unified_diff(expected, actual, "expected", "actual", lineterm="")
        )


@dataclass
class HarnessReport:
    """Results for every fixture of one handler."""

    handler: str
    results: list[CaseResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def passed_count(self) -> int:
        return len(self.results) - self.failed_count


def _truncation_mismatch(
    expected: TruncationInfo, actual: TruncationInfo | None
) -> str | None:
    if actual is None:
        if expected.truncated:
            return f"expected truncation {expected.to_dict()}, got none"
        return None
    if expected.truncated != actual.truncated or expected.reason != actual.reason:
        return f"expected truncation {expected.to_dict()}, got {actual.to_dict()}"
    if expected.description is not None and expected.description != actual.description:
        return (
            f"expected truncation description {expected.description!r}, "
            f"got {actual.description!r}"
        )
    return None


async def run_test(
    case: TestCase,
    ref: FactoryRef,
    runtime: HandlerRuntime,
    check_chunking: bool = True,
) -> CaseResult:
    """Replay one fixture and compare against its expectations."""
    try:
        result = await replay(case, ref, runtime)
    except TershError as e:
        return CaseResult(case=case, passed=False, failures=[f"{e.kind}: {e}"])

    actual = result.summary or ""
    failures: list[str] = []
    if actual.strip() != case.expected_summary.strip():
        failures.append("summary does not match expected")

    if case.expected_truncation is not None:
        mismatch = _truncation_mismatch(case.expected_truncation, result.truncation)
        if mismatch:
            failures.append(mismatch)

    if check_chunking:
        for label, split in CHUNKINGS.items():
            try:
                again = await replay(
                    case, ref, runtime, split(case.stdout_text), split(case.stderr_text)
                )
            except TershError as e:
                failures.append(f"replay failed ({label}): {e}")
                continue
            if again.summary != result.summary:
                failures.append(f"summary changes when output is re-chunked ({label})")
            elif again.truncation != result.truncation:
                failures.append(f"truncation changes when output is re-chunked ({label})")

    return CaseResult(
        case=case,
        passed=not failures,
        actual_summary=actual,
        actual_truncation=result.truncation,
        failures=failures,
    )


async def run_handler_tests(
    handler_name: str,
    registry: HandlerRegistry,
    runtime: HandlerRuntime,
    start: Path | None = None,
    check_chunking: bool = True,
) -> HarnessReport:
    """
    Run every fixture of a handler.

    Raises:
        KeyError: the handler is not in the registry
    """
    ref = registry.get(handler_name)
    if ref is None:
        raise KeyError(f"handler not found: {handler_name}")

    report = HarnessReport(handler=handler_name)
    for path in find_tests(handler_name, start):
        try:
            case = load_test_file(path)
        except ValueError as e:
            placeholder = TestCase(name=path.stem, command="", expected_summary="", path=path)
            report.results.append(CaseResult(case=placeholder, passed=False, failures=[str(e)]))
            continue
        result = await run_test(case, ref, runtime, check_chunking=check_chunking)
        logger.debug("%s/%s: %s", handler_name, case.name, "pass" if result.passed else "FAIL")
        report.results.append(result)
    return report


async def update_snapshot(case: TestCase, ref: FactoryRef, runtime: HandlerRuntime) -> str:
    """
    Re-record a fixture's expected summary from the handler's current output.

    Rewrites expected_summary (and expected_truncation) in the fixture file;
    every other field is kept. Returns the new summary.
    """
    if case.path is None:
        raise ValueError(f"{case.name}: fixture has no file to update")

    result = await replay(case, ref, runtime)
    summary = result.summary or ""

    with open(case.path, "rb") as f:
        data = tomllib.load(f)
    data["expected_summary"] = summary
    if result.truncation is not None:
        data["expected_truncation"] = result.truncation.to_dict()
    else:
        data.pop("expected_truncation", None)

    with open(case.path, "wb") as f:
        tomli_w.dump(data, f, multiline_strings=True)

    case.expected_summary = summary
    case.expected_truncation = result.truncation
    logger.info("updated snapshot %s", case.path)
    return summary
