"""Adaptive per-operation timeouts.

The estimator keeps the most recent successful durations per operation key
and derives the next timeout from their mean. Until enough samples exist it
returns a fixed default; it never fails, it only degrades to that default.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from modelbatch.core.config import TimeoutConfig
from modelbatch.core.logging import get_logger

_logger = get_logger("timeout")


@dataclass(frozen=True)
class TimeoutHistoryEntry:
    """One observed successful duration."""

    key: str
    duration_seconds: float
    timestamp: float


def operation_key(
    file_name: str, script_name: str, key_by: Literal["file", "script"] = "script"
) -> str:
    """Choose the history key for a (file, script) operation."""
    return script_name if key_by == "script" else file_name


class TimeoutEstimator:
    """Rolling-history timeout calculator.

    Args:
        default_timeout_seconds: Returned while a key has too few samples.
        required_success_count: Samples needed before adapting.
        buffer_factor: Multiplier applied to the mean duration.
        history_size: Samples kept per key (oldest dropped first).
        max_age_seconds: Samples older than this are evicted on write.
        clock: Wall-clock source in seconds; injectable for tests.
    """

    def __init__(
        self,
        default_timeout_seconds: float = 480.0,
        required_success_count: int = 3,
        buffer_factor: float = 1.5,
        history_size: int = 5,
        max_age_seconds: float = 24 * 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be positive")
        if required_success_count < 1:
            raise ValueError("required_success_count must be at least 1")
        if history_size < required_success_count:
            raise ValueError("history_size must be >= required_success_count")
        self.default_timeout_seconds = default_timeout_seconds
        self.required_success_count = required_success_count
        self.buffer_factor = buffer_factor
        self.history_size = history_size
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._history: dict[str, deque[TimeoutHistoryEntry]] = {}

    @classmethod
    def from_config(
        cls, config: TimeoutConfig, clock: Callable[[], float] = time.time
    ) -> TimeoutEstimator:
        return cls(
            default_timeout_seconds=config.default_seconds,
            required_success_count=config.required_samples,
            buffer_factor=config.buffer_factor,
            history_size=config.history_size,
            max_age_seconds=config.max_age_hours * 3600,
            clock=clock,
        )

    def calculate_timeout(self, key: str) -> float:
        """Timeout in seconds for the next operation under ``key``."""
        samples = self._history.get(key)
        if not samples or len(samples) < self.required_success_count:
            return self.default_timeout_seconds
        mean = sum(e.duration_seconds for e in samples) / len(samples)
        return mean * self.buffer_factor

    def record_outcome(self, key: str, duration_seconds: float) -> None:
        """Record a successful operation's duration."""
        now = self._clock()
        samples = self._history.get(key)
        if samples is None:
            samples = self._history[key] = deque(maxlen=self.history_size)
        samples.append(TimeoutHistoryEntry(key, duration_seconds, now))
        self._prune(now)
        _logger.debug(
            "timeout.sample_recorded",
            key=key,
            duration_seconds=round(duration_seconds, 3),
            samples=len(samples),
            next_timeout_seconds=round(self.calculate_timeout(key), 3),
        )

    def history(self, key: str) -> list[TimeoutHistoryEntry]:
        return list(self._history.get(key, ()))

    def _prune(self, now: float) -> None:
        cutoff = now - self.max_age_seconds
        for key in list(self._history):
            samples = self._history[key]
            while samples and samples[0].timestamp < cutoff:
                samples.popleft()
            if not samples:
                del self._history[key]


__all__ = ["TimeoutEstimator", "TimeoutHistoryEntry", "operation_key"]
