"""
tersh - run commands and get a short summary of their output.

Usage:
    tersh exec -- cargo build
    tersh exec --set show_warnings=true -- cargo build --release
    tersh exec --exact --json -- cargo test
    tersh test cargo
    tersh test --update cargo
    tersh handlers
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
from pathlib import Path
import tomllib
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table
import typer

from . import __version__
from .config import TershConfig, load_config
from .discovery import handlers_with_fixtures
from .errors import TershError
from .executor import execute_command
from .logging_utils import setup_logging
from .models import ExecuteRequest, ExecuteResult
from .registry import HandlerRegistry, default_registry
from .runtime import create_runtime
from .testing import find_tests, load_test_file, run_handler_tests, update_snapshot

console = Console()
err_console = Console(stderr=True)

# Exit code for failures of tersh itself (as opposed to the command's own)
TERSH_FAILURE_EXIT = 2

app = typer.Typer(
    name="tersh",
    help="Run commands and get a short, actionable summary of their output.",
    add_completion=False,
    no_args_is_help=True,
)


@dataclass
class _Options:
    verbose: bool = False
    log_format: str | None = None


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"tersh {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
    log_format: str = typer.Option(None, "--log-format", help="Log format: text or json"),
    version: bool = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True, help="Show version"
    ),
) -> None:
    ctx.obj = _Options(verbose=verbose, log_format=log_format)


def _fail(stage: str, kind: str, message: str) -> typer.Exit:
    err_console.print(
        f"[tersh] {stage} failed ({kind}): {message}",
        markup=False,
        highlight=False,
        soft_wrap=True,
    )
    return typer.Exit(code=TERSH_FAILURE_EXIT)


def _setup(ctx: typer.Context, start: Path) -> TershConfig:
    """Load config for `start` and configure logging from it and the global flags."""
    opts: _Options = ctx.obj or _Options()
    try:
        cfg = load_config(start)
    except ValueError as e:
        raise _fail("config", "config_error", str(e)) from None
    level = "debug" if opts.verbose else cfg.logging.level
    setup_logging(level, opts.log_format or cfg.logging.format)
    return cfg


def _registry(cfg: TershConfig, start: Path) -> HandlerRegistry:
    return default_registry(start, discover=cfg.discovery.enabled)


def parse_setting(assignment: str) -> tuple[str, Any]:
    """
    Parse a KEY=VALUE assignment from --set.

    The value is read as a TOML value when it is one (true, 3, 1.5, "quoted"),
    otherwise it is taken as a plain string.
    """
    key, sep, raw = assignment.partition("=")
    key = key.strip()
    if not sep or not key:
        raise typer.BadParameter(f"expected KEY=VALUE, got {assignment!r}")
    try:
        value = tomllib.loads(f"v = {raw}")["v"]
    except tomllib.TOMLDecodeError:
        value = raw
    return key, value


def _exit_status(code: int) -> int:
    # Killed by signal N -> 128 + N, as shells report it
    return 128 - code if code < 0 else code


def _emit_human(result: ExecuteResult) -> None:
    if result.summary:
        console.print(result.summary, markup=False, highlight=False, soft_wrap=True)
    if result.truncation is not None and result.truncation.truncated:
        note = result.truncation.description or "output was shortened"
        reason = result.truncation.reason or "truncated"
        err_console.print(f"[dim]({reason}) {escape(note)}[/dim]", highlight=False)
    if result.timed_out:
        err_console.print("[yellow]command timed out; summary covers partial output[/yellow]")
    for diagnostic in result.diagnostics:
        err_console.print(f"[yellow]warning:[/yellow] {escape(diagnostic)}", highlight=False)


@app.command(
    "exec",
    context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True},
)
def exec_command(
    ctx: typer.Context,
    command: list[str] = typer.Argument(..., help="Command to run (after --)"),
    exact: bool = typer.Option(False, "--exact", help="Run the command unmodified"),
    cwd: Path = typer.Option(None, "--cwd", "-C", help="Working directory"),
    set_: list[str] = typer.Option(
        None, "--set", "-s", help="Handler setting KEY=VALUE (repeatable)"
    ),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Timeout in seconds"),
    partial_on_timeout: bool = typer.Option(
        False, "--partial-on-timeout", help="On timeout, summarize the output read so far"
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Run a command and print its summary. Exits with the command's exit code."""
    working_dir = (cwd or Path.cwd()).resolve()
    cfg = _setup(ctx, working_dir)
    settings = dict(parse_setting(item) for item in set_ or [])

    request = ExecuteRequest(
        command=command[0] if len(command) == 1 else list(command),
        working_dir=working_dir,
        exact=exact,
        settings=settings,
        timeout=timeout,
        partial_on_timeout=partial_on_timeout,
    )

    try:
        result = asyncio.run(
            execute_command(request, registry=_registry(cfg, working_dir), config=cfg)
        )
    except TershError as e:
        if json_output:
            print(json.dumps({"error": e.to_dict()}, indent=2))
            raise typer.Exit(code=TERSH_FAILURE_EXIT) from None
        raise _fail(e.stage, e.kind, str(e)) from None

    if json_output:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        _emit_human(result)
    raise typer.Exit(code=_exit_status(result.exit_code))


async def _run_tests(
    names: list[str],
    registry: HandlerRegistry,
    cfg: TershConfig,
    start: Path,
    update: bool,
    check_chunking: bool,
) -> tuple[int, int]:
    passed = failed = 0
    async with create_runtime(cfg.runtime.backend, timeout=cfg.runtime.handler_timeout) as runtime:
        for name in names:
            ref = registry.get(name)
            if ref is None:
                err_console.print(f"[red]✗[/red] {name}: handler not found")
                failed += 1
                continue

            if update:
                for path in find_tests(name, start):
                    try:
                        case = load_test_file(path)
                        await update_snapshot(case, ref, runtime)
                    except (ValueError, TershError) as e:
                        console.print(f"[red]✗[/red] {name}/{path.stem}: {escape(str(e))}", highlight=False)
                        failed += 1
                        continue
                    console.print(f"[cyan]↻[/cyan] {name}/{case.name} updated")
                    passed += 1
                continue

            report = await run_handler_tests(
                name, registry, runtime, start=start, check_chunking=check_chunking
            )
            if not report.results:
                console.print(f"[yellow]![/yellow] {name}: no fixtures found")
            for result in report.results:
                label = f"{name}/{result.case.name}"
                if result.passed:
                    console.print(f"[green]✓[/green] {label}")
                    continue
                console.print(f"[red]✗[/red] {label}")
                for failure in result.failures:
                    console.print(f"    {failure}", markup=False, highlight=False)
                diff = result.diff()
                if diff:
                    console.print(diff, markup=False, highlight=False, soft_wrap=True)
            passed += report.passed_count
            failed += report.failed_count
    return passed, failed


@app.command("test")
def test_command(
    ctx: typer.Context,
    handler: str = typer.Argument(None, help="Handler name (default: all with fixtures)"),
    update: bool = typer.Option(False, "--update", help="Re-record expected summaries"),
    no_rechunk: bool = typer.Option(
        False, "--no-rechunk", help="Skip the re-chunking replays"
    ),
) -> None:
    """Replay recorded fixtures through their handlers."""
    start = Path.cwd()
    cfg = _setup(ctx, start)
    names = [handler] if handler else handlers_with_fixtures(start)
    if not names:
        console.print("[yellow]No handler fixtures found[/yellow]")
        raise typer.Exit(code=1)

    try:
        passed, failed = asyncio.run(
            _run_tests(names, _registry(cfg, start), cfg, start, update, not no_rechunk)
        )
    except TershError as e:
        raise _fail(e.stage, e.kind, str(e)) from None

    style = "red" if failed else "green"
    console.print(f"\n[{style}]{passed} passed, {failed} failed[/{style}]")
    if failed:
        raise typer.Exit(code=1)


async def _describe(registry: HandlerRegistry, cfg: TershConfig) -> list[tuple[str, str, str]]:
    rows: list[tuple[str, str, str]] = []
    async with create_runtime(cfg.runtime.backend, timeout=cfg.runtime.handler_timeout) as runtime:
        for ref in registry:
            try:
                schema = await runtime.settings_schema(ref)
            except TershError as e:
                rows.append((ref.name, ref.origin, f"<error: {e}>"))
                continue
            settings = ", ".join(
                f"{key}: {d.type} = {json.dumps(d.default)}" for key, d in schema.items()
            )
            rows.append((ref.name, ref.origin, settings or "-"))
    return rows


@app.command("handlers")
def handlers_command(ctx: typer.Context) -> None:
    """List handlers in match order (local handlers first)."""
    start = Path.cwd()
    cfg = _setup(ctx, start)
    registry = _registry(cfg, start)

    table = Table(title="Handlers")
    table.add_column("Name", style="cyan")
    table.add_column("Origin")
    table.add_column("Settings")
    for name, origin, settings in asyncio.run(_describe(registry, cfg)):
        table.add_row(name, origin, settings)
    console.print(table)


def main() -> None:
    """Entry point for the `tersh` script."""
    app()


if __name__ == "__main__":
    main()
