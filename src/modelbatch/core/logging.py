"""Structured logging for modelbatch.

Batch runs last hours and are read back after the fact, so every component
logs structured events through structlog. Entries carry the run correlation
fields (project, run_id, file_name) from an ``ExecutionContext`` held in a
ContextVar, and long runs can log JSON to a size-rotated, gzip-compressed
file.

Example usage:
    from modelbatch.core.logging import get_logger, configure_logging

    configure_logging(level="DEBUG", format="console")
    logger = get_logger("orchestrator")
    logger.info("batch.started", total_files=12)

    ctx = ExecutionContext(project="tower-a")
    with with_context(ctx.with_file("L01.ifc")):
        logger.info("file.dispatched")  # includes project, run_id, file_name
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names whose values are never written to logs
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})

def get_default_log_path(output_dir: Path) -> Path:
    """Default location of the engine log for an output directory."""
    return output_dir / "logs" / "modelbatch.log"


class CompressingRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler that gzips rotated files.

    ``modelbatch.log.1`` becomes ``modelbatch.log.1.gz``. Unattended overnight
    runs otherwise fill the output volume with plain-text logs.
    """

    def __init__(
        self,
        filename: str | Path,
        mode: str = "a",
        maxBytes: int = 0,
        backupCount: int = 0,
        encoding: str | None = None,
        delay: bool = False,
        compress_level: int = 9,
    ) -> None:
        self.compress_level = compress_level
        super().__init__(
            filename,
            mode=mode,
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
            delay=delay,
        )

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]

        # Shift .N.gz -> .N+1.gz, highest first
        for i in range(self.backupCount - 1, 0, -1):
            src = f"{self.baseFilename}.{i}.gz"
            dst = f"{self.baseFilename}.{i + 1}.gz"
            if os.path.exists(src):
                os.replace(src, dst)

        if os.path.exists(self.baseFilename):
            compressed_path = f"{self.baseFilename}.1.gz"
            try:
                with (
                    open(self.baseFilename, "rb") as f_in,
                    gzip.open(
                        compressed_path, "wb", compresslevel=self.compress_level
                    ) as f_out,
                ):
                    shutil.copyfileobj(f_in, f_out)
                os.remove(self.baseFilename)
            except OSError:
                # Keep an uncompressed backup rather than lose the data
                Path(compressed_path).unlink(missing_ok=True)
                os.replace(self.baseFilename, f"{self.baseFilename}.1")

        stale = Path(f"{self.baseFilename}.{self.backupCount + 1}.gz")
        stale.unlink(missing_ok=True)

        if not self.delay:
            self.stream = self._open()

    def get_log_files(self) -> list[Path]:
        """All files managed by this handler, newest first."""
        files: list[Path] = []
        base = Path(self.baseFilename)
        if base.exists():
            files.append(base)
        for i in range(1, self.backupCount + 1):
            gz_path = Path(f"{self.baseFilename}.{i}.gz")
            plain_path = Path(f"{self.baseFilename}.{i}")
            if gz_path.exists():
                files.append(gz_path)
            elif plain_path.exists():
                files.append(plain_path)
        return files


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable correlation context for one batch run.

    Attributes:
        project: Project name from configuration.
        run_id: Unique id of this ``modelbatch run`` invocation.
        file_name: Model file currently being processed, if any.
        attempt: Current attempt number for ``file_name``, if any.
        component: Component emitting the log entry.
    """

    project: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    file_name: str | None = None
    attempt: int | None = None
    component: str = "unknown"

    def with_file(self, file_name: str) -> ExecutionContext:
        return replace(self, file_name=file_name, attempt=None)

    def with_attempt(self, attempt: int) -> ExecutionContext:
        return replace(self, attempt=attempt)

    def to_dict(self) -> dict[str, Any]:
        """Context fields for logging, omitting unset ones."""
        result: dict[str, Any] = {
            "project": self.project,
            "run_id": self.run_id,
            "component": self.component,
        }
        if self.file_name is not None:
            result["file_name"] = self.file_name
        if self.attempt is not None:
            result["attempt"] = self.attempt
        return result


_current_context: ContextVar[ExecutionContext | None] = ContextVar(
    "modelbatch_context", default=None
)


def get_current_context() -> ExecutionContext | None:
    return _current_context.get()


def clear_context() -> None:
    _current_context.set(None)


@contextmanager
def with_context(ctx: ExecutionContext) -> Iterator[ExecutionContext]:
    """Set ``ctx`` as the current ExecutionContext for the duration of a block.

    Log calls inside the block automatically include the context fields.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, one level deep."""

    def _clean(key: str, value: Any) -> Any:
        key_lower = key.lower()
        if any(pattern in key_lower for pattern in SENSITIVE_PATTERNS):
            return "[REDACTED]"
        return value

    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _clean(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _clean(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor adding ExecutionContext fields.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class BatchLogger:
    """Component logger wrapping structlog.

    The underlying structlog logger is fetched on every call so loggers created
    at import time still honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(
            **self._context
        )
        return logger

    def bind(self, **context: Any) -> BatchLogger:
        """Return a new logger with additional bound context."""
        new_logger = BatchLogger.__new__(BatchLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def unbind(self, *keys: str) -> BatchLogger:
        """Return a new logger with ``keys`` removed from the bound context."""
        new_logger = BatchLogger.__new__(BatchLogger)
        new_logger._component = self._component
        new_logger._context = {
            k: v for k, v in self._context.items() if k not in keys
        }
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def critical(self, event: str, **kw: Any) -> None:
        self._get_logger().critical(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an error with traceback; call from inside an ``except`` block."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
    include_context: bool = True,
    compress_logs: bool = True,
) -> None:
    """Configure structured logging. Call once at startup.

    Args:
        level: Minimum log level to capture.
        format: ``console`` for human-readable stderr output, ``json`` for
            structured output (to ``file_path`` or stdout), ``both`` for
            console on stderr plus JSON lines in ``file_path``.
        file_path: Log file; required when ``format="both"``.
        max_file_size_mb: Size at which the log file rotates.
        backup_count: Number of rotated files to keep.
        include_timestamps: Add ISO-8601 UTC timestamps.
        include_context: Add ExecutionContext fields when a context is active.
        compress_logs: Gzip rotated files.

    Raises:
        ValueError: If ``format="both"`` without ``file_path``.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    if format in ("json", "both"):
        if file_path:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handler_cls = (
                CompressingRotatingFileHandler if compress_logs else RotatingFileHandler
            )
            file_handler: logging.Handler = handler_cls(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(log_level)
            handlers.append(file_handler)
        else:
            json_handler = logging.StreamHandler(sys.stdout)
            json_handler.setLevel(log_level)
            handlers.append(json_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    # cache_logger_on_first_use=False keeps import-time loggers reconfigurable
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> BatchLogger:
    """Get a logger bound to ``component``.

    Example:
        logger = get_logger("retry")
        logger.warning("retry.scheduled", delay_seconds=5.0)
    """
    return BatchLogger(component, **initial_context)


__all__ = [
    "BatchLogger",
    "CompressingRotatingFileHandler",
    "ExecutionContext",
    "SENSITIVE_PATTERNS",
    "clear_context",
    "configure_logging",
    "get_current_context",
    "get_default_log_path",
    "get_logger",
    "with_context",
]
