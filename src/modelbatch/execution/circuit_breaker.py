"""Resource circuit breaker.

Halts file processing while the workstation is under sustained resource
pressure. Resource snapshots that exceed the CPU or memory threshold count as
failures; after ``failure_threshold`` consecutive breaches the circuit opens
and stays open until ``reset_timeout`` has passed since the last breach.

State transitions:
- CLOSED -> OPEN: consecutive breaches reach ``failure_threshold``
- OPEN -> CLOSED: ``can_continue`` is called after ``reset_timeout`` elapsed,
  or ``reset()`` is called

Snapshots arrive from both the processing loop and the background monitor,
so every read and mutation goes through one lock.

Example usage:
    breaker = CircuitBreaker(failure_threshold=5, reset_timeout=900.0)

    while not breaker.can_continue(probe.snapshot()):
        if await token.sleep(breaker.time_until_reset() or 5.0):
            break
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any

from modelbatch.core.config import CircuitBreakerConfig
from modelbatch.core.logging import get_logger
from modelbatch.execution.probe import ResourceSnapshot

_logger = get_logger("circuit_breaker")

OPEN_MESSAGE = "Circuit breaker is open - waiting for system recovery"


class CircuitState(str, Enum):
    CLOSED = "closed"
    """Normal operation; breaches are counted."""

    OPEN = "open"
    """Work is refused until the reset timeout elapses."""


@dataclass
class CircuitBreakerStats:
    """Counters for operator visibility."""

    total_checks: int = 0
    total_breaches: int = 0
    times_opened: int = 0
    times_reset: int = 0
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    last_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_checks": self.total_checks,
            "total_breaches": self.total_breaches,
            "times_opened": self.times_opened,
            "times_reset": self.times_reset,
            "consecutive_failures": self.consecutive_failures,
            "last_failure_at": self.last_failure_at,
            "last_reason": self.last_reason,
        }


@dataclass(frozen=True)
class BreakerDecision:
    allowed: bool
    message: str | None = None


class CircuitBreaker:
    """Counts consecutive resource breaches and refuses work when open.

    Invariant: ``is_open()`` is true only while the failure count is at or
    above the threshold and the last failure is younger than the reset
    timeout. A reset clears the count and the failure timestamp together.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 900.0,
        cpu_threshold_percent: float = 90.0,
        memory_threshold_percent: float = 85.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if reset_timeout <= 0:
            raise ValueError("reset_timeout must be positive")

        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._cpu_threshold = cpu_threshold_percent
        self._memory_threshold = memory_threshold_percent
        self._clock = clock

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._last_message: str | None = None
        self._stats = CircuitBreakerStats()

    @classmethod
    def from_config(
        cls, config: CircuitBreakerConfig, clock: Callable[[], float] = time.monotonic
    ) -> CircuitBreaker:
        return cls(
            failure_threshold=config.failure_threshold,
            reset_timeout=config.reset_timeout_seconds,
            cpu_threshold_percent=config.cpu_threshold_percent,
            memory_threshold_percent=config.memory_threshold_percent,
            clock=clock,
        )

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def last_message(self) -> str | None:
        """Message from the most recent refusal, cleared when work is allowed."""
        with self._lock:
            return self._last_message

    def _elapsed_since_failure(self) -> float | None:
        if self._last_failure_time is None:
            return None
        return self._clock() - self._last_failure_time

    def _reset_locked(self, reason: str) -> None:
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._stats.consecutive_failures = 0
        self._stats.times_reset += 1
        _logger.info(
            "circuit_breaker.reset",
            from_state=previous.value,
            reason=reason,
        )

    def is_open(self) -> bool:
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return False
            elapsed = self._elapsed_since_failure()
            return elapsed is not None and elapsed < self._reset_timeout

    def check(self, snapshot: ResourceSnapshot) -> BreakerDecision:
        """Evaluate ``snapshot`` and decide whether work may continue."""
        with self._lock:
            self._stats.total_checks += 1

            if self._state is CircuitState.OPEN:
                elapsed = self._elapsed_since_failure()
                if elapsed is None or elapsed >= self._reset_timeout:
                    self._reset_locked("reset_timeout_elapsed")
                    self._last_message = None
                    return BreakerDecision(True)
                self._last_message = OPEN_MESSAGE
                return BreakerDecision(False, OPEN_MESSAGE)

            breach = self._describe_breach(snapshot)
            if breach is None:
                # Only consecutive breaches count
                self._failure_count = 0
                self._stats.consecutive_failures = 0
                self._last_message = None
                return BreakerDecision(True)

            self._record_failure_locked(breach)
            self._last_message = breach
            return BreakerDecision(False, breach)

    def can_continue(self, snapshot: ResourceSnapshot) -> bool:
        return self.check(snapshot).allowed

    def _describe_breach(self, snapshot: ResourceSnapshot) -> str | None:
        reasons = []
        if snapshot.cpu_percent > self._cpu_threshold:
            reasons.append(
                f"CPU {snapshot.cpu_percent:.1f}% > {self._cpu_threshold:.0f}%"
            )
        if snapshot.memory_percent > self._memory_threshold:
            reasons.append(
                f"memory {snapshot.memory_percent:.1f}% > {self._memory_threshold:.0f}%"
            )
        if not reasons:
            return None
        return "Resource threshold exceeded: " + ", ".join(reasons)

    def record_failure(self, reason: str) -> None:
        with self._lock:
            self._record_failure_locked(reason)

    def _record_failure_locked(self, reason: str) -> None:
        now = self._clock()
        self._failure_count += 1
        self._last_failure_time = now
        self._stats.total_breaches += 1
        self._stats.consecutive_failures = self._failure_count
        self._stats.last_failure_at = now
        self._stats.last_reason = reason

        if (
            self._state is CircuitState.CLOSED
            and self._failure_count >= self._failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._stats.times_opened += 1
            _logger.warning(
                "circuit_breaker.opened",
                failure_count=self._failure_count,
                failure_threshold=self._failure_threshold,
                reset_timeout_seconds=self._reset_timeout,
                reason=reason,
            )
        else:
            _logger.debug(
                "circuit_breaker.failure_recorded",
                state=self._state.value,
                failure_count=self._failure_count,
                failure_threshold=self._failure_threshold,
                reason=reason,
            )

    def reset(self) -> None:
        with self._lock:
            self._reset_locked("manual")
            self._last_message = None

    def time_until_reset(self) -> float | None:
        """Seconds until an open circuit may close, or None when closed."""
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return None
            elapsed = self._elapsed_since_failure()
            if elapsed is None:
                return 0.0
            return max(0.0, self._reset_timeout - elapsed)

    def get_state(self) -> CircuitState:
        with self._lock:
            return self._state

    def get_stats(self) -> CircuitBreakerStats:
        """Copy of the current statistics."""
        with self._lock:
            return CircuitBreakerStats(**self._stats.to_dict())

    def __repr__(self) -> str:
        with self._lock:
            return (
                f"CircuitBreaker(state={self._state.value}, "
                f"failures={self._failure_count}/{self._failure_threshold}, "
                f"reset_timeout={self._reset_timeout}s)"
            )


__all__ = [
    "BreakerDecision",
    "CircuitBreaker",
    "CircuitBreakerStats",
    "CircuitState",
    "OPEN_MESSAGE",
]
