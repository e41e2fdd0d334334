"""Validate command: check a batch configuration without running it."""

from __future__ import annotations

from pathlib import Path

import typer

from modelbatch.core.config import BatchConfig
from modelbatch.core.errors import ConfigError
from modelbatch.execution.reprocess import ReprocessMode
from modelbatch.host import DirectoryScanner, FileConfigSource

from ..helpers import ErrorMessages, configure_global_logging
from ..output import console


def validate(
    config_file: Path = typer.Argument(
        ...,
        help="Path to the YAML or JSON batch configuration",
        exists=True,
        readable=True,
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output validation results as JSON",
    ),
) -> None:
    """Validate a batch configuration file.

    Checks the schema, the configured paths and the reprocess mode, and
    counts the model files a run would find.

    Exit codes:
      0: Valid
      1: Invalid (one or more problems)
      2: Cannot validate (unreadable or unparsable file)
    """
    configure_global_logging(console)

    try:
        config = BatchConfig.from_file(config_file)
    except ConfigError as e:
        if json_output:
            console.print_json(data={"valid": False, "error": str(e)})
        else:
            console.print(f"[red]{ErrorMessages.CONFIG_LOAD_ERROR}:[/red] {e}")
        raise typer.Exit(2) from None

    problems = FileConfigSource(config_file).validate(config)
    try:
        ReprocessMode.parse(config.reprocess.mode)
    except ValueError as e:
        problems.append(str(e))
    mode = config.reprocess.mode.upper()
    if mode != ReprocessMode.ALL.value and config.reprocess.reference_log is None:
        problems.append(f"Reprocess mode {mode} requires reprocess.reference_log")

    file_count: int | None = None
    if config.directories.input_dir.is_dir():
        scanner = DirectoryScanner(config.script.file_extension, config.script.recursive)
        try:
            file_count = len(
                scanner.scan(config.directories.input_dir, config.script.name_filter)
            )
        except OSError as e:
            problems.append(f"Cannot scan input directory: {e}")

    if json_output:
        console.print_json(
            data={
                "valid": not problems,
                "project_name": config.project_name,
                "files_found": file_count,
                "problems": problems,
            }
        )
    elif problems:
        console.print(f"[red]✗[/red] {config_file.name} has {len(problems)} problem(s):")
        for problem in problems:
            console.print(f"  [red]•[/red] {problem}", highlight=False)
    else:
        console.print(f"[green]✓[/green] {config_file.name} is valid")
        console.print(f"  Project: [bold]{config.project_name}[/bold]")
        console.print(f"  Input:   {config.directories.input_dir}", highlight=False)
        console.print(f"  Output:  {config.directories.output_dir}", highlight=False)
        console.print(
            f"  Files:   {file_count} matching {config.script.file_extension}"
        )

    raise typer.Exit(1 if problems else 0)
