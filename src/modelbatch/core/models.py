"""Run and file outcome models.

A ``BatchRun`` is created when orchestration starts, collects one
``FileOutcome`` per processed file in processing order, and is finalized at
the end of the run. The finalized run is written as the reference run log
that a later run's reprocess selection reads back.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from modelbatch.core.errors import ReferenceLogError, RunFinalizedError
from modelbatch.core.logging import get_logger
from modelbatch.utils import atomic_write_text, utc_now

_logger = get_logger("models")


class BatchStatus(str, Enum):
    """Overall status of a batch run."""

    RUNNING = "running"
    PASS = "pass"
    FAIL = "fail"
    CANCELLED = "cancelled"


class FileStatus(str, Enum):
    """Lifecycle status of a single file."""

    PENDING = "pending"
    RUNNING = "running"
    PASS = "pass"
    FAIL = "fail"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    MISSING = "missing"

    @property
    def is_terminal(self) -> bool:
        return self not in (FileStatus.PENDING, FileStatus.RUNNING)

    @property
    def is_failure(self) -> bool:
        return self in FAILED_STATUSES


FAILED_STATUSES = frozenset({FileStatus.FAIL, FileStatus.TIMEOUT, FileStatus.MISSING})

# Position in the lifecycle; a file never moves to a lower rank.
STATUS_RANK: dict[FileStatus, int] = {
    FileStatus.PENDING: 0,
    FileStatus.RUNNING: 1,
    FileStatus.PASS: 2,
    FileStatus.FAIL: 2,
    FileStatus.CANCELLED: 2,
    FileStatus.TIMEOUT: 2,
    FileStatus.MISSING: 2,
}


class ProcessingMetrics(BaseModel):
    """Per-file processing measurements."""

    processing_time_seconds: float = Field(default=0.0, ge=0)
    attempts: int = Field(default=0, ge=0)


class FileOutcome(BaseModel):
    """Result of processing one model file."""

    file_name: str
    status: FileStatus = FileStatus.PENDING
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    details: str = ""
    metrics: ProcessingMetrics = Field(default_factory=ProcessingMetrics)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return max(0.0, (self.end_time - self.start_time).total_seconds())

    def complete(self, status: FileStatus, details: str, attempts: int) -> None:
        """Mark the outcome terminal and fill in timing metrics."""
        self.status = status
        self.details = details
        self.end_time = utc_now()
        self.metrics = ProcessingMetrics(
            processing_time_seconds=self.duration_seconds,
            attempts=attempts,
        )


class BatchRun(BaseModel):
    """One top-level execution and its ordered file outcomes.

    The run is immutable once finalized: ``end_time`` is set and further
    outcomes are rejected.
    """

    project_name: str
    run_id: str
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    status: BatchStatus = BatchStatus.RUNNING
    was_cancelled: bool = False
    total_files: int = 0
    successful_files: int = 0
    failed_files: int = 0
    reprocess_mode: str = "ALL"
    details: str = ""
    file_outcomes: list[FileOutcome] = Field(default_factory=list)

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    def add_outcome(self, outcome: FileOutcome) -> None:
        if self.is_finalized:
            raise RunFinalizedError(
                f"Run {self.run_id} is finalized; cannot add {outcome.file_name}"
            )
        self.file_outcomes.append(outcome)

    def outcome_for(self, file_name: str) -> FileOutcome | None:
        """Last recorded outcome for ``file_name`` (case-insensitive)."""
        wanted = file_name.casefold()
        for outcome in reversed(self.file_outcomes):
            if outcome.file_name.casefold() == wanted:
                return outcome
        return None

    def finalize(
        self,
        *,
        cancelled: bool = False,
        aborted: bool = False,
        details: str | None = None,
    ) -> None:
        """Compute totals and the terminal status, then freeze the run.

        Status is CANCELLED if cancellation was observed, otherwise FAIL if the
        run was aborted before processing or any file failed, otherwise PASS.
        """
        if self.is_finalized:
            raise RunFinalizedError(f"Run {self.run_id} is already finalized")
        self.was_cancelled = cancelled
        self.total_files = len(self.file_outcomes)
        self.successful_files = sum(
            1 for o in self.file_outcomes if o.status is FileStatus.PASS
        )
        self.failed_files = sum(1 for o in self.file_outcomes if o.status.is_failure)
        if cancelled:
            self.status = BatchStatus.CANCELLED
        elif aborted or self.failed_files > 0:
            self.status = BatchStatus.FAIL
        else:
            self.status = BatchStatus.PASS
        if details is not None:
            self.details = details
        self.end_time = utc_now()

    def save(self, path: Path) -> Path:
        """Atomically write the run as JSON to ``path``."""
        atomic_write_text(path, self.model_dump_json(indent=2))
        _logger.info(
            "run_log.saved",
            path=str(path),
            status=self.status.value,
            total_files=self.total_files,
        )
        return path

    @classmethod
    def load(cls, path: Path) -> BatchRun:
        """Load a reference run log.

        Raises:
            ReferenceLogError: If the file is missing, unreadable or does not
                match the run log shape.
        """
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ReferenceLogError(path, str(e)) from e
        try:
            return cls.model_validate_json(content)
        except ValidationError as e:
            raise ReferenceLogError(
                path, f"malformed run log ({e.error_count()} errors)"
            ) from e
        except ValueError as e:
            raise ReferenceLogError(path, f"malformed run log ({e})") from e


class FileState(BaseModel):
    """Tracked lifecycle state of one file, as written to checkpoints."""

    file_name: str
    status: FileStatus = FileStatus.PENDING
    last_update_time: datetime = Field(default_factory=utc_now)
    details: str = ""


class Checkpoint(BaseModel):
    """Point-in-time diagnostic snapshot of the run's file states."""

    timestamp: datetime = Field(default_factory=utc_now)
    run_id: str | None = None
    total_files: int = 0
    completed_files: int = 0
    is_processing: bool = False
    file_states: dict[str, FileState] = Field(default_factory=dict)


__all__ = [
    "BatchRun",
    "BatchStatus",
    "Checkpoint",
    "FAILED_STATUSES",
    "FileOutcome",
    "FileState",
    "FileStatus",
    "ProcessingMetrics",
    "STATUS_RANK",
]
