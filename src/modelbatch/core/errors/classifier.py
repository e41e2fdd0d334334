"""Failure classification, recovery lookup and per-file error history.

The classifier maps a raised exception (or an already categorized failure
reported as a value) onto an ``ErrorCategory``, looks up the recovery action
for it, and keeps an additive per-file error history for diagnostics. The
history never drives control flow.
"""

from __future__ import annotations

import errno
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from modelbatch.core.errors.codes import (
    DEFAULT_RECOVERY_TABLE,
    ErrorCategory,
    RecoveryAction,
    Severity,
)
from modelbatch.core.logging import get_logger
from modelbatch.utils import utc_now

_logger = get_logger("errors")

_PERMISSION_ERRNOS = frozenset({errno.EACCES, errno.EPERM})
_RESOURCE_ERRNOS = frozenset({errno.ENOMEM, errno.ENOSPC, errno.EMFILE, errno.ENFILE})


@dataclass(frozen=True)
class ErrorRecord:
    """One failure observed for a file."""

    file_name: str
    category: ErrorCategory
    severity: Severity
    message: str
    timestamp: datetime


@dataclass
class ErrorStats:
    """Running error statistics for one file.

    ``error_rate`` is errors per elapsed hour since the first error. Until any
    measurable time has passed it equals the raw count.
    """

    file_name: str
    error_count: int = 0
    first_error_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    error_rate: float = 0.0

    def record(self, message: str, at: datetime) -> None:
        if self.first_error_at is None:
            self.first_error_at = at
        self.error_count += 1
        self.last_error_at = at
        self.last_error = message
        self.update_error_rate(at)

    def update_error_rate(self, now: datetime) -> None:
        if self.first_error_at is None:
            self.error_rate = 0.0
            return
        hours = (now - self.first_error_at).total_seconds() / 3600
        self.error_rate = self.error_count / hours if hours > 0 else float(self.error_count)


@dataclass(frozen=True)
class ErrorResponse:
    """Outcome of handling one failure: its category and what to do next."""

    file_name: str
    category: ErrorCategory
    severity: Severity
    recovery: RecoveryAction
    message: str

    @property
    def should_retry(self) -> bool:
        return self.recovery.should_retry

    def summary(self) -> str:
        """Short operator-facing line, e.g. for ``Reporter.error``."""
        return (
            f"{self.file_name}: {self.category.value} error - {self.message} "
            f"({self.recovery.steps})"
        )


@dataclass
class BatchErrorAnalysis:
    """Aggregate view over every file's error history."""

    total_errors: int = 0
    errors_by_category: dict[ErrorCategory, int] = field(default_factory=dict)
    highest_error_rate: float = 0.0
    highest_error_rate_file: str | None = None


class ErrorClassifier:
    """Categorizes failures and proposes recovery actions.

    The recovery table may be replaced per instance (e.g. zero delays in tests
    or a longer resource back-off on a shared workstation), never per call.

    Example:
        classifier = ErrorClassifier()
        category = classifier.classify(PermissionError("locked"))
        action = classifier.determine_recovery(category, Severity.MEDIUM)
        assert not action.should_retry
    """

    def __init__(
        self,
        recovery_table: Mapping[ErrorCategory, RecoveryAction] | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        table = dict(DEFAULT_RECOVERY_TABLE)
        if recovery_table:
            table.update(recovery_table)
        self._table = table
        self._clock = clock
        self._history: dict[str, list[ErrorRecord]] = defaultdict(list)
        self._stats: dict[str, ErrorStats] = {}

    @property
    def recovery_table(self) -> dict[ErrorCategory, RecoveryAction]:
        return dict(self._table)

    def classify(self, exc: BaseException) -> ErrorCategory:
        """Map an exception to an error category.

        Subclass order matters: ``PermissionError`` and ``TimeoutError`` are
        both ``OSError`` subclasses and must be matched first.
        """
        if isinstance(exc, PermissionError):
            return ErrorCategory.PERMISSION
        if isinstance(exc, MemoryError):
            return ErrorCategory.RESOURCE
        if isinstance(exc, TimeoutError):
            return ErrorCategory.TIMEOUT
        if isinstance(exc, OSError):
            if exc.errno in _PERMISSION_ERRNOS:
                return ErrorCategory.PERMISSION
            if exc.errno in _RESOURCE_ERRNOS:
                return ErrorCategory.RESOURCE
            return ErrorCategory.IO
        return ErrorCategory.GENERAL

    def determine_recovery(
        self,
        category: ErrorCategory,
        severity: Severity = Severity.MEDIUM,
    ) -> RecoveryAction:
        action = self._table[category]
        if category is ErrorCategory.GENERAL and severity is Severity.CRITICAL:
            return RecoveryAction(False, 0.0, "Critical failure; manual intervention required")
        return action

    def handle_error(
        self,
        file_name: str,
        exc: BaseException,
        severity: Severity = Severity.MEDIUM,
    ) -> ErrorResponse:
        """Classify ``exc``, record it for ``file_name`` and return the response."""
        category = self.classify(exc)
        message = str(exc) or type(exc).__name__
        return self.record_error(file_name, category, message, severity)

    def record_error(
        self,
        file_name: str,
        category: ErrorCategory,
        message: str,
        severity: Severity = Severity.MEDIUM,
    ) -> ErrorResponse:
        """Record a failure that was reported as a value rather than raised."""
        now = self._clock()
        self._history[file_name].append(
            ErrorRecord(file_name, category, severity, message, now)
        )
        stats = self._stats.get(file_name)
        if stats is None:
            stats = self._stats[file_name] = ErrorStats(file_name)
        stats.record(message, now)

        recovery = self.determine_recovery(category, severity)
        _logger.warning(
            "error.recorded",
            file_name=file_name,
            category=category.value,
            severity=severity.name,
            error=message,
            should_retry=recovery.should_retry,
            retry_delay_seconds=recovery.retry_delay_seconds,
            error_count=stats.error_count,
        )
        return ErrorResponse(file_name, category, severity, recovery, message)

    def get_error_history(self, file_name: str | None = None) -> list[ErrorRecord]:
        """Errors for one file, or for every file in recording order."""
        if file_name is not None:
            return list(self._history.get(file_name, []))
        records = [r for entries in self._history.values() for r in entries]
        return sorted(records, key=lambda r: r.timestamp)

    def get_error_stats(self, file_name: str) -> ErrorStats | None:
        stats = self._stats.get(file_name)
        if stats is not None:
            stats.update_error_rate(self._clock())
        return stats

    def clear_error_history(self, file_name: str | None = None) -> None:
        if file_name is None:
            self._history.clear()
            self._stats.clear()
        else:
            self._history.pop(file_name, None)
            self._stats.pop(file_name, None)

    def batch_error_analysis(self) -> BatchErrorAnalysis:
        analysis = BatchErrorAnalysis()
        now = self._clock()
        for file_name, records in self._history.items():
            analysis.total_errors += len(records)
            for record in records:
                analysis.errors_by_category[record.category] = (
                    analysis.errors_by_category.get(record.category, 0) + 1
                )
            stats = self._stats[file_name]
            stats.update_error_rate(now)
            if stats.error_rate > analysis.highest_error_rate:
                analysis.highest_error_rate = stats.error_rate
                analysis.highest_error_rate_file = file_name
        return analysis


__all__ = [
    "BatchErrorAnalysis",
    "ErrorClassifier",
    "ErrorRecord",
    "ErrorResponse",
    "ErrorStats",
]
