"""Tests for modelbatch.execution.monitor and cancellation."""

import asyncio
from pathlib import Path

import pytest

from modelbatch.execution.cancellation import CancellationToken
from modelbatch.execution.circuit_breaker import CircuitBreaker
from modelbatch.execution.monitor import BatchMonitor
from tests.helpers import FakeProbe


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_sleep_returns_false_on_timeout(self):
        assert await CancellationToken().sleep(0.01) is False

    @pytest.mark.asyncio
    async def test_sleep_interrupted_by_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel, "stop")

        assert await asyncio.wait_for(token.sleep(60.0), timeout=5.0) is True
        assert token.reason == "stop"

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"
        assert await token.sleep(0) is True

    @pytest.mark.asyncio
    async def test_cancel_threadsafe(self):
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        await asyncio.to_thread(token.cancel_threadsafe, loop, "from thread")
        await asyncio.wait_for(token.wait(), timeout=5.0)
        assert token.cancelled


class TestBatchMonitor:
    """Tests for the background watcher."""

    def test_cancel_file_triggers_cancellation(self, tmp_path: Path):
        token = CancellationToken()
        sentinel = tmp_path / "CANCEL"
        monitor = BatchMonitor(token, FakeProbe(), cancel_file=sentinel)

        assert not monitor.check_cancellation()
        sentinel.write_text("")
        assert monitor.check_cancellation()
        assert token.cancelled

    def test_extra_cancel_checks(self):
        token = CancellationToken()
        monitor = BatchMonitor(token, FakeProbe(), cancel_checks=[lambda: True])
        assert monitor.check_cancellation()
        assert token.reason == "cancellation check triggered"

    def test_check_now_feeds_breaker(self):
        breaker = CircuitBreaker(failure_threshold=2)
        monitor = BatchMonitor(CancellationToken(), FakeProbe(hot_checks=2), breaker)

        monitor.check_now()
        monitor.check_now()

        assert breaker.is_open()
        assert len(monitor.snapshots()) == 2
        assert monitor.latest_snapshot is not None

    def test_snapshot_history_is_bounded(self):
        monitor = BatchMonitor(CancellationToken(), FakeProbe(), max_snapshots=3)
        for _ in range(5):
            monitor.check_now()
        assert len(monitor.snapshots()) == 3

    @pytest.mark.asyncio
    async def test_background_loop_observes_sentinel(self, tmp_path: Path):
        token = CancellationToken()
        sentinel = tmp_path / "CANCEL"
        monitor = BatchMonitor(
            token, FakeProbe(), interval_seconds=0.01, cancel_file=sentinel
        )

        await monitor.start()
        assert monitor.running
        sentinel.write_text("")
        await asyncio.wait_for(token.wait(), timeout=5.0)
        await monitor.stop()

        assert not monitor.running
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_loop_survives_probe_errors(self):
        class FlakyProbe(FakeProbe):
            def snapshot(self):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("sensor unavailable")
                return super().snapshot()

        probe = FlakyProbe()
        monitor = BatchMonitor(CancellationToken(), probe, interval_seconds=0.01)

        await monitor.start()
        for _ in range(100):
            if monitor.snapshots():
                break
            await asyncio.sleep(0.01)
        await monitor.stop()

        assert monitor.snapshots()
