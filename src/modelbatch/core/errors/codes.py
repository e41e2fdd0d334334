"""Error categories, severity levels and the recovery policy table.

Recovery Policy
===============

Every failure observed while processing a model file falls into one of five
categories. The table below is the only place retry eligibility and delay are
decided; the retry coordinator and the orchestrator both look decisions up
here through ``ErrorClassifier.determine_recovery``.

    | Category   | Retry | Delay | Remediation                        |
    |------------|-------|-------|------------------------------------|
    | io         | Yes   | 5s    | Wait for file system availability  |
    | resource   | Yes   | 60s   | Wait for resource availability     |
    | timeout    | Yes   | 30s   | Retry with increased timeout       |
    | permission | No    | N/A   | Check file permissions             |
    | general    | Yes*  | 10s   | Standard retry                     |

    *General failures are not retried when severity is CRITICAL.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import NamedTuple


class ErrorCategory(str, Enum):
    """High-level failure categories."""

    IO = "io"
    """File system failures: locked, missing or unreadable files."""

    RESOURCE = "resource"
    """Exhaustion conditions: out of memory, disk full, too many open files."""

    TIMEOUT = "timeout"
    """The completion signal never arrived within the adaptive timeout."""

    PERMISSION = "permission"
    """Access denied. Never retried; needs operator action."""

    GENERAL = "general"
    """Anything not matching a more specific category."""


class Severity(IntEnum):
    """Severity levels; lower value is more severe."""

    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


class RecoveryAction(NamedTuple):
    """Recovery decision for a category/severity pair.

    Attributes:
        should_retry: Whether another attempt is worthwhile.
        retry_delay_seconds: Pause before the next attempt.
        steps: Human-readable remediation.
    """

    should_retry: bool
    retry_delay_seconds: float
    steps: str


class RecoveryDelays:
    """Default recovery delays in seconds."""

    IO: float = 5.0
    RESOURCE: float = 60.0
    TIMEOUT: float = 30.0
    GENERAL: float = 10.0


DEFAULT_RECOVERY_TABLE: dict[ErrorCategory, RecoveryAction] = {
    ErrorCategory.IO: RecoveryAction(
        True, RecoveryDelays.IO, "Wait for file system availability"
    ),
    ErrorCategory.RESOURCE: RecoveryAction(
        True, RecoveryDelays.RESOURCE, "Wait for resource availability"
    ),
    ErrorCategory.TIMEOUT: RecoveryAction(
        True, RecoveryDelays.TIMEOUT, "Retry with increased timeout"
    ),
    ErrorCategory.PERMISSION: RecoveryAction(False, 0.0, "Check file permissions"),
    ErrorCategory.GENERAL: RecoveryAction(
        True, RecoveryDelays.GENERAL, "Standard retry"
    ),
}


__all__ = [
    "DEFAULT_RECOVERY_TABLE",
    "ErrorCategory",
    "RecoveryAction",
    "RecoveryDelays",
    "Severity",
]
