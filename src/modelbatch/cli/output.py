"""Rich console output for the modelbatch CLI."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from modelbatch.core.models import BatchRun, BatchStatus, FileOutcome, FileStatus

console = Console()


class StatusColors:
    """Color mappings for run and file statuses."""

    BATCH_STATUS: dict[BatchStatus, str] = {
        BatchStatus.RUNNING: "blue",
        BatchStatus.PASS: "green",
        BatchStatus.FAIL: "red",
        BatchStatus.CANCELLED: "dim",
    }

    FILE_STATUS: dict[FileStatus, str] = {
        FileStatus.PENDING: "yellow",
        FileStatus.RUNNING: "blue",
        FileStatus.PASS: "green",
        FileStatus.FAIL: "red",
        FileStatus.TIMEOUT: "magenta",
        FileStatus.MISSING: "red",
        FileStatus.CANCELLED: "dim",
    }

    @classmethod
    def get_batch_color(cls, status: BatchStatus) -> str:
        return cls.BATCH_STATUS.get(status, "white")

    @classmethod
    def get_file_color(cls, status: FileStatus) -> str:
        return cls.FILE_STATUS.get(status, "white")


def format_duration(seconds: float | None) -> str:
    """Format seconds as e.g. "5.2s", "3m 12s" or "1h 30m"."""
    if seconds is None:
        return "N/A"
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


def format_timestamp(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def create_outcomes_table(outcomes: list[FileOutcome], title: str = "Files") -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Details", overflow="fold")
    for index, outcome in enumerate(outcomes, start=1):
        color = StatusColors.get_file_color(outcome.status)
        table.add_row(
            str(index),
            outcome.file_name,
            f"[{color}]{outcome.status.value.upper()}[/{color}]",
            str(outcome.metrics.attempts),
            format_duration(outcome.metrics.processing_time_seconds),
            outcome.details,
        )
    return table


def create_run_summary_panel(run: BatchRun) -> Panel:
    color = StatusColors.get_batch_color(run.status)
    elapsed = None
    if run.end_time is not None:
        elapsed = (run.end_time - run.start_time).total_seconds()
    lines = [
        f"[bold]Project:[/bold] {run.project_name}   [bold]Run:[/bold] {run.run_id}",
        f"[bold]Status:[/bold] [{color}]{run.status.value.upper()}[/{color}]"
        f"   [bold]Mode:[/bold] {run.reprocess_mode}",
        f"[bold]Files:[/bold] {run.total_files} processed, "
        f"[green]{run.successful_files} passed[/green], "
        f"[red]{run.failed_files} failed[/red]",
        f"[bold]Started:[/bold] {format_timestamp(run.start_time)}"
        f"   [bold]Elapsed:[/bold] {format_duration(elapsed)}",
    ]
    if run.details:
        lines.append(f"[bold]Details:[/bold] {run.details}")
    return Panel("\n".join(lines), title="Batch Run", border_style=color)


class ConsoleReporter:
    """``Reporter`` that prints to a rich console.

    Quiet mode keeps errors only; progress lines are shown otherwise.
    """

    def __init__(self, console_instance: Console | None = None, quiet: bool = False) -> None:
        self.console = console_instance or console
        self.quiet = quiet

    def progress(
        self,
        current: int,
        total: int,
        file_name: str,
        estimated_remaining_seconds: float | None,
    ) -> None:
        if self.quiet:
            return
        eta = format_duration(estimated_remaining_seconds)
        self.console.print(
            f"[dim][{current}/{total}][/dim] {file_name} [dim](remaining ~{eta})[/dim]"
        )

    def message(self, text: str) -> None:
        if not self.quiet:
            self.console.print(text, markup=False, highlight=False)

    def error(self, text: str) -> None:
        self.console.print(f"[red]Error:[/red] {text}", highlight=False)
