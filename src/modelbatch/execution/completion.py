"""Completion detection through signal files.

The host gives no synchronous return value for a dispatched script. Instead
the script writes one JSON signal file when it finishes:

    <output_dir>/completion/{file_name}_{project_name}_{PASS|FAIL}.json
    {"success": true, "details": "12 objects exported"}

``CompletionDetector.await_completion`` polls for that file, consumes it, and
bounds the wait with the adaptive timeout from ``TimeoutEstimator``. File
names are namespaced by model file and project, so detectors for distinct
files never see each other's signals.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

from modelbatch.core.logging import get_logger
from modelbatch.execution.cancellation import CancellationToken
from modelbatch.execution.timeout import TimeoutEstimator, operation_key
from modelbatch.utils import atomic_write_text

_logger = get_logger("completion")

PASS = "PASS"
FAIL = "FAIL"


class CompletionSignal(BaseModel):
    """Body of a completion signal file."""

    success: bool
    details: str | None = None


class CompletionOutcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CompletionResult:
    """Result of waiting for one file's completion signal."""

    success: bool
    details: str
    outcome: CompletionOutcome
    elapsed_seconds: float = 0.0

    @property
    def timed_out(self) -> bool:
        return self.outcome is CompletionOutcome.TIMED_OUT

    @property
    def cancelled(self) -> bool:
        return self.outcome is CompletionOutcome.CANCELLED


def signal_file_name(file_name: str, project_name: str, status: str) -> str:
    return f"{file_name}_{project_name}_{status}.json"


def write_completion_signal(
    completion_dir: Path,
    file_name: str,
    project_name: str,
    success: bool,
    details: str | None = None,
) -> Path:
    """Write a completion signal the way a host-side script is expected to.

    The write is atomic so a polling detector never reads a partial body.
    """
    status = PASS if success else FAIL
    path = completion_dir / signal_file_name(file_name, project_name, status)
    body = CompletionSignal(success=success, details=details)
    atomic_write_text(path, body.model_dump_json())
    return path


class CompletionDetector:
    """Waits for and consumes completion signals for one project.

    Args:
        completion_dir: Directory the host-side script writes signals into.
        project_name: Project identity used in signal file names.
        estimator: Source of adaptive timeouts; fed with successful durations.
        poll_interval: Seconds between signal checks.
        key_by: Whether timeout history is keyed by file or by script.
        read_attempts: Reads attempted before an unparsable signal is
            reported as a failure (the script may still be writing it).
        read_retry_delay: Base delay between reads, grown linearly.
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        completion_dir: Path,
        project_name: str,
        estimator: TimeoutEstimator,
        *,
        poll_interval: float = 0.1,
        key_by: Literal["file", "script"] = "script",
        read_attempts: int = 3,
        read_retry_delay: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if read_attempts < 1:
            raise ValueError("read_attempts must be at least 1")
        self.completion_dir = completion_dir
        self.project_name = project_name
        self.estimator = estimator
        self.poll_interval = poll_interval
        self.key_by = key_by
        self.read_attempts = read_attempts
        self.read_retry_delay = read_retry_delay
        self._clock = clock
        completion_dir.mkdir(parents=True, exist_ok=True)

    def signal_path(self, file_name: str, status: str) -> Path:
        return self.completion_dir / signal_file_name(file_name, self.project_name, status)

    def has_valid_completion_files(self, file_name: str) -> bool:
        """Whether a PASS or FAIL signal exists. Does not consume anything."""
        return (
            self.signal_path(file_name, PASS).exists()
            or self.signal_path(file_name, FAIL).exists()
        )

    def discard_stale_signals(self, file_name: str) -> list[Path]:
        """Delete leftover signals for ``file_name`` before a new dispatch."""
        removed: list[Path] = []
        for status in (PASS, FAIL):
            path = self.signal_path(file_name, status)
            if path.exists():
                self._delete(path)
                removed.append(path)
        if removed:
            _logger.warning(
                "completion.stale_signals_discarded",
                file_name=file_name,
                paths=[str(p) for p in removed],
            )
        return removed

    async def await_completion(
        self,
        file_name: str,
        script_name: str,
        token: CancellationToken | None = None,
    ) -> CompletionResult:
        """Poll until a signal arrives, the timeout elapses, or cancellation.

        A successful signal's wall-clock duration is recorded with the
        estimator; failures and timeouts are not.
        """
        key = operation_key(file_name, script_name, self.key_by)
        timeout = self.estimator.calculate_timeout(key)
        start = self._clock()
        _logger.debug(
            "completion.waiting",
            file_name=file_name,
            timeout_seconds=round(timeout, 3),
            poll_interval=self.poll_interval,
        )

        while True:
            result = await self._check(file_name)
            elapsed = self._clock() - start
            if result is not None:
                success, details = result
                if success:
                    self.estimator.record_outcome(key, elapsed)
                _logger.info(
                    "completion.signal_received",
                    file_name=file_name,
                    success=success,
                    elapsed_seconds=round(elapsed, 3),
                )
                return CompletionResult(
                    success=success,
                    details=details,
                    outcome=CompletionOutcome.PASSED if success else CompletionOutcome.FAILED,
                    elapsed_seconds=elapsed,
                )

            if elapsed >= timeout:
                break

            wait = min(self.poll_interval, timeout - elapsed)
            if token is not None:
                if await token.sleep(wait):
                    _logger.info(
                        "completion.cancelled",
                        file_name=file_name,
                        elapsed_seconds=round(elapsed, 3),
                    )
                    return CompletionResult(
                        success=False,
                        details="Cancelled while waiting for completion",
                        outcome=CompletionOutcome.CANCELLED,
                        elapsed_seconds=self._clock() - start,
                    )
            else:
                await asyncio.sleep(wait)

        elapsed = self._clock() - start
        _logger.warning(
            "completion.timed_out",
            file_name=file_name,
            timeout_seconds=round(timeout, 3),
        )
        return CompletionResult(
            success=False,
            details=f"Operation timed out after {timeout / 60:.1f} minutes",
            outcome=CompletionOutcome.TIMED_OUT,
            elapsed_seconds=elapsed,
        )

    async def _check(self, file_name: str) -> tuple[bool, str] | None:
        pass_path = self.signal_path(file_name, PASS)
        fail_path = self.signal_path(file_name, FAIL)
        pass_exists = pass_path.exists()
        fail_exists = fail_path.exists()

        if pass_exists and fail_exists:
            # Both present: FAIL wins, both are consumed
            _logger.warning(
                "completion.conflicting_signals",
                file_name=file_name,
                resolution="fail",
            )
            result = await self._read_signal(fail_path)
            self._delete(fail_path)
            self._delete(pass_path)
            return (False, result[1])

        for path in (fail_path, pass_path):
            if path.exists():
                result = await self._read_signal(path)
                self._delete(path)
                return result
        return None

    async def _read_signal(self, path: Path) -> tuple[bool, str]:
        last_error = ""
        for attempt in range(1, self.read_attempts + 1):
            try:
                content = path.read_bytes()
                if content.strip() == b"null":
                    return (False, "Invalid completion file format")
                signal = CompletionSignal.model_validate_json(content)
                return (signal.success, signal.details or "")
            except (OSError, ValueError) as e:
                last_error = str(e).splitlines()[0]
                _logger.debug(
                    "completion.read_retry",
                    path=str(path),
                    attempt=attempt,
                    error=last_error,
                )
                if attempt < self.read_attempts:
                    await asyncio.sleep(self.read_retry_delay * attempt)
        return (False, f"Error reading completion file: {last_error}")

    def _delete(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            _logger.warning("completion.delete_failed", path=str(path), error=str(e))


__all__ = [
    "CompletionDetector",
    "CompletionOutcome",
    "CompletionResult",
    "CompletionSignal",
    "FAIL",
    "PASS",
    "signal_file_name",
    "write_completion_signal",
]
