"""Background monitor running beside the processing loop.

Polls for user cancellation (the ``CANCEL`` sentinel file in the output
directory plus any extra checks) and captures periodic resource snapshots,
feeding each one to the circuit breaker. It is the only source of true
concurrency in a run.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from modelbatch.core.logging import get_logger
from modelbatch.execution.cancellation import CancellationToken
from modelbatch.execution.circuit_breaker import CircuitBreaker
from modelbatch.execution.probe import ResourceSnapshot
from modelbatch.utils import log_task_exception

if TYPE_CHECKING:
    from modelbatch.host import ResourceProbe

_logger = get_logger("monitor")


class BatchMonitor:
    """Periodic cancellation and resource watcher.

    Args:
        token: Token cancelled when a cancellation request is seen.
        probe: Resource snapshot source.
        breaker: Receives every snapshot; None disables resource gating.
        interval_seconds: Loop period.
        cancel_file: Sentinel whose existence requests cancellation.
        cancel_checks: Extra callables returning True to request cancellation.
        max_snapshots: Snapshot history kept for diagnostics.
    """

    def __init__(
        self,
        token: CancellationToken,
        probe: ResourceProbe,
        breaker: CircuitBreaker | None = None,
        *,
        interval_seconds: float = 1.0,
        cancel_file: Path | None = None,
        cancel_checks: Sequence[Callable[[], bool]] = (),
        max_snapshots: int = 1000,
    ) -> None:
        self._token = token
        self._probe = probe
        self._breaker = breaker
        self._interval = interval_seconds
        self._cancel_file = cancel_file
        self._cancel_checks = list(cancel_checks)
        self._snapshots: deque[ResourceSnapshot] = deque(maxlen=max_snapshots)
        self._task: asyncio.Task[None] | None = None
        self._consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def latest_snapshot(self) -> ResourceSnapshot | None:
        return self._snapshots[-1] if self._snapshots else None

    def snapshots(self) -> list[ResourceSnapshot]:
        return list(self._snapshots)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._loop(), name="modelbatch-monitor")
        self._task.add_done_callback(self._on_loop_done)
        _logger.info("monitor.started", interval=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        _logger.info("monitor.stopped", snapshots=len(self._snapshots))

    def check_cancellation(self) -> bool:
        """Run the cancellation checks once; cancels the token on a hit."""
        if self._token.cancelled:
            return True
        if self._cancel_file is not None and self._cancel_file.exists():
            self._token.cancel(f"cancel file present: {self._cancel_file.name}")
            return True
        for check in self._cancel_checks:
            if check():
                self._token.cancel("cancellation check triggered")
                return True
        return False

    def check_now(self) -> ResourceSnapshot:
        """Take a snapshot, record it and feed it to the breaker."""
        snapshot = self._probe.snapshot()
        self._snapshots.append(snapshot)
        if self._breaker is not None:
            decision = self._breaker.check(snapshot)
            if not decision.allowed:
                _logger.debug("monitor.breaker_refused", reason=decision.message)
        return snapshot

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        log_task_exception(task, _logger, "monitor.loop_died_unexpectedly")

    async def _loop(self) -> None:
        while True:
            try:
                self.check_cancellation()
                self.check_now()
                self._consecutive_failures = 0
            except Exception:
                self._consecutive_failures += 1
                _logger.exception(
                    "monitor.check_failed",
                    consecutive_failures=self._consecutive_failures,
                )
            await asyncio.sleep(self._interval)


__all__ = ["BatchMonitor"]
