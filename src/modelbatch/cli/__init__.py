"""modelbatch CLI.

Typer app with global output and logging options; each command lives in its
own module under ``commands``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from modelbatch import __version__

# Re-exported for direct access to module state (tests reset it)
from . import helpers as helpers
from .commands import report, run, validate
from .helpers import (
    OutputLevel,
    set_log_file,
    set_log_format,
    set_log_level,
    set_output_level,
)
from .output import console

app = typer.Typer(
    name="modelbatch",
    help="Batch-process model files through a host application script",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"modelbatch v{__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    if value:
        set_output_level(OutputLevel.VERBOSE)


def quiet_callback(value: bool) -> None:
    if value:
        set_output_level(OutputLevel.QUIET)


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        is_eager=True,
        help="Show the per-file outcome table after a run",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        callback=quiet_callback,
        is_eager=True,
        help="Show minimal output (errors only)",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="MODELBATCH_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Write JSON logs to this file",
            envvar="MODELBATCH_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: console, json or both",
            envvar="MODELBATCH_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """modelbatch - drive a host application over a directory of model files."""


app.command()(run)
app.command()(validate)
app.command()(report)


__all__ = ["app", "main"]
