"""Report command: render a finished run log."""

from __future__ import annotations

from pathlib import Path

import typer

from modelbatch.core.errors import ReferenceLogError
from modelbatch.core.models import BatchRun

from ..helpers import ErrorMessages, configure_global_logging
from ..output import console, create_outcomes_table, create_run_summary_panel


def report(
    run_log: Path = typer.Argument(
        ...,
        help="Run log written by a previous `modelbatch run`",
        exists=True,
        readable=True,
    ),
    failed_only: bool = typer.Option(
        False,
        "--failed-only",
        "-f",
        help="Only list files that failed, timed out or were missing",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output the report as JSON",
    ),
) -> None:
    """Summarize a run log and list its file outcomes."""
    configure_global_logging(console)

    try:
        batch_run = BatchRun.load(run_log)
    except ReferenceLogError as e:
        console.print(f"[red]{ErrorMessages.RUN_LOG_LOAD_ERROR}:[/red] {e}")
        raise typer.Exit(1) from None

    outcomes = batch_run.file_outcomes
    if failed_only:
        outcomes = [o for o in outcomes if o.status.is_failure]

    if json_output:
        payload = {
            "project_name": batch_run.project_name,
            "run_id": batch_run.run_id,
            "status": batch_run.status.value,
            "total_files": batch_run.total_files,
            "successful_files": batch_run.successful_files,
            "failed_files": batch_run.failed_files,
            "files": [
                {
                    "file_name": o.file_name,
                    "status": o.status.value,
                    "attempts": o.metrics.attempts,
                    "details": o.details,
                }
                for o in outcomes
            ],
        }
        console.print_json(data=payload)
        return

    console.print(create_run_summary_panel(batch_run))
    if outcomes:
        title = "Failed files" if failed_only else "Files"
        console.print(create_outcomes_table(outcomes, title=title))
    elif failed_only:
        console.print("[green]No failed files.[/green]")
