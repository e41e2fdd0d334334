"""Bounded retry with selectable backoff.

``RetryCoordinator.execute_with_retry`` runs one unit of work (for a model
file: dispatch the script, then wait for its completion signal) up to
``max_retries`` times in total.

Delay between attempts:
- A failure carrying an ``ErrorCategory`` (and any raised exception, after
  classification) uses the delay from the classifier's recovery table, and
  stops immediately when that table says not to retry.
- An uncategorized failure uses the backoff policy:
  FIXED = base, LINEAR = base * (n + 1), EXPONENTIAL = min(base * 2^n, max)
  where n is the zero-based retry index.

Jitter is one factor drawn uniformly from [0.9, 1.1] per invocation and
applied to every delay of that invocation. A schedule therefore stays
monotone while separate invocations are spread apart.

Example usage:
    coordinator = RetryCoordinator(classifier, max_retries=3)

    async def attempt(n: int) -> OperationResult:
        await host.run_script(handle, script)
        done = await detector.await_completion(name, script.name, token)
        return OperationResult(done.success, done.details)

    result = await coordinator.execute_with_retry(name, attempt, token=token)
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from modelbatch.core.config import BackoffPolicy, RetryConfig
from modelbatch.core.errors import ErrorCategory, ErrorClassifier, Severity
from modelbatch.core.logging import get_logger
from modelbatch.execution.cancellation import CancellationToken

_logger = get_logger("retry")

JITTER_FRACTION = 0.1


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one attempt, reported as a value.

    Attributes:
        success: Whether the attempt succeeded.
        details: Human-readable detail for logs and the run log.
        category: Failure category when known; routes the retry decision
            through the recovery table.
        retryable: False stops retrying regardless of category.
        cancelled: The attempt observed cancellation.
    """

    success: bool
    details: str = ""
    category: ErrorCategory | None = None
    retryable: bool = True
    cancelled: bool = False


@dataclass
class RetryState:
    """Ephemeral per-key state for one ``execute_with_retry`` invocation."""

    key: str
    retry_count: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class RetryResult:
    success: bool
    details: str
    attempts: int
    cancelled: bool = False
    category: ErrorCategory | None = None


Operation = Callable[[int], Awaitable[OperationResult]]


class RetryCoordinator:
    """Runs an async operation under a retry budget.

    Args:
        classifier: Source of category recovery decisions.
        max_retries: Total attempts, including the first.
        base_delay: Backoff base in seconds.
        max_delay: Cap for exponential backoff in seconds.
        policy: Default backoff policy.
        jitter: Apply a +/-10% jitter factor.
        rng: Random source; injectable for deterministic tests.
        on_status: Receives one status line per scheduled retry.
    """

    def __init__(
        self,
        classifier: ErrorClassifier,
        max_retries: int = 3,
        base_delay: float = 5.0,
        max_delay: float = 30.0,
        policy: BackoffPolicy = BackoffPolicy.EXPONENTIAL,
        jitter: bool = True,
        rng: random.Random | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("delays must be non-negative")
        if base_delay > max_delay:
            raise ValueError("base_delay must not exceed max_delay")
        self.classifier = classifier
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.policy = policy
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._on_status = on_status
        self._states: dict[str, RetryState] = {}

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        classifier: ErrorClassifier,
        on_status: Callable[[str], None] | None = None,
        rng: random.Random | None = None,
    ) -> RetryCoordinator:
        return cls(
            classifier,
            max_retries=config.max_retries,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            policy=config.policy,
            jitter=config.jitter,
            rng=rng,
            on_status=on_status,
        )

    @property
    def active_keys(self) -> list[str]:
        """Keys with an invocation in progress."""
        return list(self._states)

    def draw_jitter_factor(self) -> float:
        if not self.jitter:
            return 1.0
        return 1.0 + self._rng.uniform(-JITTER_FRACTION, JITTER_FRACTION)

    def compute_delay(
        self,
        retry_index: int,
        policy: BackoffPolicy | None = None,
        jitter_factor: float = 1.0,
    ) -> float:
        """Backoff before retry number ``retry_index + 1`` (zero-based index)."""
        policy = policy or self.policy
        if policy is BackoffPolicy.FIXED:
            delay = self.base_delay
        elif policy is BackoffPolicy.LINEAR:
            delay = self.base_delay * (retry_index + 1)
        else:
            delay = min(self.base_delay * (2**retry_index), self.max_delay)
        return delay * jitter_factor

    def delay_schedule(
        self, policy: BackoffPolicy | None = None, jitter_factor: float = 1.0
    ) -> list[float]:
        """Every backoff delay one invocation could wait, in order."""
        return [
            self.compute_delay(i, policy, jitter_factor)
            for i in range(self.max_retries - 1)
        ]

    async def execute_with_retry(
        self,
        key: str,
        operation: Operation,
        policy: BackoffPolicy | None = None,
        token: CancellationToken | None = None,
    ) -> RetryResult:
        """Run ``operation`` until it succeeds or the budget is spent.

        The operation receives the 1-based attempt number. Raised exceptions
        count as failed attempts; ``asyncio.CancelledError`` propagates.
        """
        policy = policy or self.policy
        jitter_factor = self.draw_jitter_factor()
        state = RetryState(key)
        self._states[key] = state
        log = _logger.bind(key=key)
        attempts = 0
        category: ErrorCategory | None = None

        try:
            for attempt in range(1, self.max_retries + 1):
                if token is not None and token.cancelled:
                    return RetryResult(
                        False, "Cancelled before attempt", attempts, True, category
                    )
                attempts = attempt
                state.retry_count = attempt - 1

                try:
                    result = await operation(attempt)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    response = self.classifier.handle_error(key, e, Severity.MEDIUM)
                    result = OperationResult(
                        success=False,
                        details=f"{type(e).__name__}: {e}",
                        category=response.category,
                        retryable=response.should_retry,
                    )
                else:
                    if not result.success and result.category is not None:
                        self.classifier.record_error(key, result.category, result.details)

                if result.success:
                    if attempt > 1:
                        log.info("retry.succeeded", attempt=attempt)
                    return RetryResult(True, result.details, attempt)

                state.last_error = result.details
                category = result.category

                if result.cancelled:
                    return RetryResult(False, result.details, attempt, True, category)
                if attempt >= self.max_retries:
                    break

                delay = self._next_delay(result, attempt - 1, policy, jitter_factor)
                if delay is None:
                    log.info(
                        "retry.not_retryable",
                        attempt=attempt,
                        category=category.value if category else None,
                        error=result.details,
                    )
                    break

                log.warning(
                    "retry.scheduled",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    delay_seconds=round(delay, 3),
                    policy=policy.value,
                    category=category.value if category else None,
                    error=result.details,
                )
                self._status(
                    f"Retry {attempt}/{self.max_retries - 1} for {key} in "
                    f"{delay:.1f}s: {result.details}"
                )
                if token is not None:
                    if await token.sleep(delay):
                        return RetryResult(
                            False, state.last_error or "Cancelled", attempt, True, category
                        )
                else:
                    await asyncio.sleep(delay)

            details = f"Failed after {attempts} attempts: {state.last_error}"
            log.warning("retry.exhausted", attempts=attempts, error=state.last_error)
            return RetryResult(False, details, attempts, False, category)
        finally:
            self._states.pop(key, None)

    def _next_delay(
        self,
        result: OperationResult,
        retry_index: int,
        policy: BackoffPolicy,
        jitter_factor: float,
    ) -> float | None:
        if not result.retryable:
            return None
        if result.category is not None:
            recovery = self.classifier.determine_recovery(result.category)
            if not recovery.should_retry:
                return None
            return recovery.retry_delay_seconds * jitter_factor
        return self.compute_delay(retry_index, policy, jitter_factor)

    def _status(self, message: str) -> None:
        if self._on_status is not None:
            self._on_status(message)


__all__ = [
    "JITTER_FRACTION",
    "Operation",
    "OperationResult",
    "RetryCoordinator",
    "RetryResult",
    "RetryState",
]
