"""Shared state and utilities for modelbatch CLI commands.

Global CLI options (verbosity, log level/file/format) are collected by the
app callback into module-level state and applied once per session by
``configure_global_logging``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console

from modelbatch.core.config import LoggingConfig
from modelbatch.core.logging import configure_logging, get_logger

_logger = get_logger("cli")


class ErrorMessages:
    CONFIG_LOAD_ERROR = "Error loading config"
    RUN_LOG_LOAD_ERROR = "Error loading run log"


class OutputLevel(str, Enum):
    QUIET = "quiet"
    NORMAL = "normal"
    VERBOSE = "verbose"


_output_level: OutputLevel = OutputLevel.NORMAL


def get_output_level() -> OutputLevel:
    return _output_level


def set_output_level(level: OutputLevel) -> None:
    global _output_level
    _output_level = level


def is_verbose() -> bool:
    return _output_level == OutputLevel.VERBOSE


def is_quiet() -> bool:
    return _output_level == OutputLevel.QUIET


@dataclass
class CliLoggingConfig:
    """Logging options gathered from the command line.

    ``None`` fields fall back to the batch config's ``logging`` section.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    file: Path | None = None
    format: Literal["json", "console", "both"] | None = None
    configured: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]


def configure_global_logging(console: Console, defaults: LoggingConfig | None = None) -> None:
    """Configure logging from CLI options, falling back to ``defaults``.

    Only configures once per session.

    Raises:
        typer.Exit: If the combination of options is invalid.
    """
    if _log_config.configured:
        return
    defaults = defaults or LoggingConfig(level="WARNING")
    level = _log_config.level or defaults.level
    log_format = _log_config.format or defaults.format
    log_file = _log_config.file or defaults.file
    if log_file is not None and log_format == "console":
        log_format = "both"
    try:
        configure_logging(
            level=level,
            format=log_format,
            file_path=log_file,
            max_file_size_mb=defaults.max_file_size_mb,
            backup_count=defaults.backup_count,
        )
        _log_config.configured = True
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def reset_logging_state() -> None:
    """Allow logging to be reconfigured (used by tests)."""
    global _output_level
    _log_config.level = None
    _log_config.file = None
    _log_config.format = None
    _log_config.configured = False
    _output_level = OutputLevel.NORMAL
