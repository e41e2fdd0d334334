"""Per-file metric history and batch-level aggregates.

The aggregator only reads outcomes handed to it; per-file status is owned by
``StateTracker``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from modelbatch.core.logging import get_logger
from modelbatch.core.models import FileOutcome, FileStatus

_logger = get_logger("metrics")


@dataclass(frozen=True)
class FileSummary:
    file_name: str
    attempts: int
    last_status: FileStatus
    total_time_seconds: float
    avg_time_seconds: float
    first_attempt: datetime
    last_attempt: datetime | None


@dataclass(frozen=True)
class BatchSummary:
    total_files: int
    completed: int
    failed: int
    avg_duration_seconds: float
    peak_duration_seconds: float
    min_duration_seconds: float
    success_rate: float

    def to_dict(self) -> dict[str, float | int]:
        return {
            "total_files": self.total_files,
            "completed": self.completed,
            "failed": self.failed,
            "avg_duration_seconds": round(self.avg_duration_seconds, 3),
            "peak_duration_seconds": round(self.peak_duration_seconds, 3),
            "min_duration_seconds": round(self.min_duration_seconds, 3),
            "success_rate": round(self.success_rate, 2),
        }


class MetricsAggregator:
    """Collects finished file outcomes and summarizes them."""

    def __init__(self) -> None:
        self._history: dict[str, list[FileOutcome]] = defaultdict(list)

    def record_file_metric(self, file_name: str, outcome: FileOutcome) -> None:
        self._history[file_name].append(outcome.model_copy(deep=True))

    def summary_for_file(self, file_name: str) -> FileSummary | None:
        history = self._history.get(file_name)
        if not history:
            return None
        durations = [o.metrics.processing_time_seconds for o in history]
        return FileSummary(
            file_name=file_name,
            attempts=len(history),
            last_status=history[-1].status,
            total_time_seconds=sum(durations),
            avg_time_seconds=sum(durations) / len(durations),
            first_attempt=history[0].start_time,
            last_attempt=history[-1].end_time,
        )

    def batch_summary(self) -> BatchSummary:
        """Aggregate over every recorded file.

        ``success_rate`` is ``completed / total_files * 100``; with no files
        recorded every figure is zero.
        """
        total = len(self._history)
        if total == 0:
            _logger.warning("metrics.empty_batch_summary")
            return BatchSummary(0, 0, 0, 0.0, 0.0, 0.0, 0.0)

        last = [entries[-1].status for entries in self._history.values()]
        completed = sum(1 for s in last if s is FileStatus.PASS)
        failed = sum(1 for s in last if s.is_failure)
        durations = [
            o.metrics.processing_time_seconds
            for entries in self._history.values()
            for o in entries
        ]
        return BatchSummary(
            total_files=total,
            completed=completed,
            failed=failed,
            avg_duration_seconds=sum(durations) / len(durations),
            peak_duration_seconds=max(durations),
            min_duration_seconds=min(durations),
            success_rate=completed / total * 100,
        )

    def estimate_remaining_seconds(self, remaining_files: int) -> float | None:
        """Average duration times ``remaining_files``; None without history."""
        if not self._history:
            return None
        if remaining_files <= 0:
            return 0.0
        return self.batch_summary().avg_duration_seconds * remaining_files


__all__ = ["BatchSummary", "FileSummary", "MetricsAggregator"]
