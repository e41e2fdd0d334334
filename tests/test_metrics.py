"""Tests for modelbatch.state.metrics module."""

from datetime import UTC, datetime, timedelta

import pytest

from modelbatch.core.models import FileOutcome, FileStatus, ProcessingMetrics
from modelbatch.state import MetricsAggregator

START = datetime(2024, 3, 1, 8, 0, tzinfo=UTC)


def outcome(name: str, status: FileStatus, seconds: float, attempts: int = 1) -> FileOutcome:
    return FileOutcome(
        file_name=name,
        status=status,
        start_time=START,
        end_time=START + timedelta(seconds=seconds),
        metrics=ProcessingMetrics(processing_time_seconds=seconds, attempts=attempts),
    )


class TestFileSummary:
    def test_unknown_file(self):
        assert MetricsAggregator().summary_for_file("a.3dm") is None

    def test_summary_over_history(self):
        metrics = MetricsAggregator()
        metrics.record_file_metric("a.3dm", outcome("a.3dm", FileStatus.FAIL, 10.0))
        metrics.record_file_metric("a.3dm", outcome("a.3dm", FileStatus.PASS, 20.0))

        summary = metrics.summary_for_file("a.3dm")

        assert summary is not None
        assert summary.attempts == 2
        assert summary.last_status is FileStatus.PASS
        assert summary.total_time_seconds == pytest.approx(30.0)
        assert summary.avg_time_seconds == pytest.approx(15.0)
        assert summary.first_attempt == START

    def test_recorded_outcome_is_copied(self):
        metrics = MetricsAggregator()
        item = outcome("a.3dm", FileStatus.PASS, 5.0)
        metrics.record_file_metric("a.3dm", item)
        item.status = FileStatus.FAIL
        assert metrics.summary_for_file("a.3dm").last_status is FileStatus.PASS


class TestBatchSummary:
    def test_empty_batch_is_all_zero(self):
        """No files recorded: success rate is 0, not a division error."""
        summary = MetricsAggregator().batch_summary()
        assert summary.total_files == 0
        assert summary.success_rate == 0.0

    def test_aggregates(self):
        metrics = MetricsAggregator()
        metrics.record_file_metric("a.3dm", outcome("a.3dm", FileStatus.PASS, 10.0))
        metrics.record_file_metric("b.3dm", outcome("b.3dm", FileStatus.TIMEOUT, 30.0))
        metrics.record_file_metric("c.3dm", outcome("c.3dm", FileStatus.FAIL, 20.0))
        metrics.record_file_metric("d.3dm", outcome("d.3dm", FileStatus.PASS, 20.0))

        summary = metrics.batch_summary()

        assert summary.total_files == 4
        assert summary.completed == 2
        assert summary.failed == 2
        assert summary.avg_duration_seconds == pytest.approx(20.0)
        assert summary.peak_duration_seconds == pytest.approx(30.0)
        assert summary.min_duration_seconds == pytest.approx(10.0)
        assert summary.success_rate == pytest.approx(50.0)
        assert summary.to_dict()["success_rate"] == 50.0


class TestEstimateRemaining:
    def test_none_without_history(self):
        assert MetricsAggregator().estimate_remaining_seconds(3) is None

    def test_average_times_remaining(self):
        metrics = MetricsAggregator()
        metrics.record_file_metric("a.3dm", outcome("a.3dm", FileStatus.PASS, 12.0))
        assert metrics.estimate_remaining_seconds(3) == pytest.approx(36.0)
        assert metrics.estimate_remaining_seconds(0) == 0.0
