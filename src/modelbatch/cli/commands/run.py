"""Run command: process every selected model file in a batch."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import typer

from modelbatch.core.config import BatchConfig, LoggingConfig
from modelbatch.core.errors import ConfigError
from modelbatch.core.logging import get_logger
from modelbatch.core.models import BatchRun, BatchStatus
from modelbatch.execution.cancellation import CancellationToken
from modelbatch.execution.orchestrator import BatchOrchestrator
from modelbatch.execution.reprocess import ReprocessMode
from modelbatch.host import FileConfigSource

from ..helpers import configure_global_logging, is_quiet, is_verbose
from ..output import (
    ConsoleReporter,
    console,
    create_outcomes_table,
    create_run_summary_panel,
)

_logger = get_logger("cli.run")

EXIT_CANCELLED = 130


def run(
    config_file: Path = typer.Argument(
        ...,
        help="Path to the YAML or JSON batch configuration",
        exists=True,
        readable=True,
    ),
    mode: str | None = typer.Option(
        None,
        "--mode",
        "-m",
        help="Reprocess mode: ALL, RESUME, PASS or FAIL (overrides the config)",
    ),
    reference_log: Path | None = typer.Option(
        None,
        "--reference-log",
        "-r",
        help="Prior run log used by RESUME, PASS and FAIL selection",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Print the finished run log as JSON",
    ),
) -> None:
    """Process every model file in the configured input directory.

    Exit codes:
      0: All processed files passed
      1: The run failed or aborted
      130: The run was cancelled
    """
    if mode is not None:
        try:
            ReprocessMode.parse(mode)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(2) from None

    configure_global_logging(console, _logging_defaults(config_file))

    source = FileConfigSource(
        config_file, reprocess_mode=mode, reference_log=reference_log
    )
    reporter = ConsoleReporter(console, quiet=json_output or is_quiet())
    token = CancellationToken()
    orchestrator = BatchOrchestrator(source, reporter, token=token)

    batch_run = asyncio.run(_run_batch(orchestrator))

    if json_output:
        console.print_json(batch_run.model_dump_json())
    elif not is_quiet():
        if batch_run.file_outcomes and (is_verbose() or batch_run.failed_files):
            console.print(create_outcomes_table(batch_run.file_outcomes))
        console.print(create_run_summary_panel(batch_run))
        if orchestrator.run_log is not None:
            console.print(f"[dim]Run log: {orchestrator.run_log}[/dim]")

    raise typer.Exit(_exit_code(batch_run))


async def _run_batch(orchestrator: BatchOrchestrator) -> BatchRun:
    """Run the orchestrator with Ctrl+C routed to its cancellation token."""
    loop = asyncio.get_running_loop()

    def on_interrupt() -> None:
        console.print("\n[yellow]Cancelling after the current file...[/yellow]")
        orchestrator.request_cancel("interrupted by user")

    installed = True
    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no add_signal_handler
        installed = False
        signal.signal(
            signal.SIGINT,
            lambda *_: loop.call_soon_threadsafe(on_interrupt),
        )
    try:
        return await orchestrator.run()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)


def _logging_defaults(config_file: Path) -> LoggingConfig | None:
    # Config errors are reported by the orchestrator; logging just falls back
    try:
        config = BatchConfig.from_file(config_file)
    except ConfigError:
        return None
    defaults = config.logging.model_copy()
    if defaults.file is None:
        defaults.file = config.directories.log_dir / "modelbatch.log"
    return defaults


def _exit_code(batch_run: BatchRun) -> int:
    if batch_run.status is BatchStatus.PASS:
        return 0
    if batch_run.status is BatchStatus.CANCELLED:
        return EXIT_CANCELLED
    return 1
