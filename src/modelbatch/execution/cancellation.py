"""Cooperative cancellation for a batch run.

Every suspension point in the engine (completion polling, retry back-off,
circuit breaker pauses) waits through ``CancellationToken.sleep`` so a
cancellation request is observed within one wait instead of after it.
"""

from __future__ import annotations

import asyncio

from modelbatch.core.logging import get_logger

_logger = get_logger("cancellation")


class CancellationToken:
    """One-shot cancellation flag with a cancellable timed wait.

    ``cancel()`` is idempotent and safe to call from a signal handler running
    on the event loop thread. Use ``cancel_threadsafe()`` from other threads.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancellation requested") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        _logger.warning("cancellation.requested", reason=reason)

    def cancel_threadsafe(
        self, loop: asyncio.AbstractEventLoop, reason: str = "cancellation requested"
    ) -> None:
        loop.call_soon_threadsafe(self.cancel, reason)

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return True if cancelled before or during the wait."""
        if self._event.is_set():
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def wait(self) -> None:
        await self._event.wait()


__all__ = ["CancellationToken"]
