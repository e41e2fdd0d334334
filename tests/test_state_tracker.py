"""Tests for modelbatch.state.tracker module."""

import json
from pathlib import Path

import pytest

from modelbatch.core.models import Checkpoint, FileStatus
from modelbatch.state import StateTracker


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def tracker(tmp_path: Path) -> StateTracker:
    tracker = StateTracker(tmp_path / "checkpoints", run_id="run-1")
    tracker.initialize_batch(3, ["a.3dm", "b.3dm", "c.3dm"])
    return tracker


class TestTransitions:
    """File state only ever moves forward."""

    def test_initialized_files_are_pending(self, tracker):
        state = tracker.get_file_state("a.3dm")
        assert state is not None
        assert state.status is FileStatus.PENDING
        assert tracker.total_count == 3
        assert tracker.is_processing

    def test_forward_transitions(self, tracker):
        assert tracker.update_file_state("a.3dm", FileStatus.RUNNING)
        assert tracker.update_file_state("a.3dm", FileStatus.PASS, "ok")
        assert tracker.get_file_state("a.3dm").details == "ok"
        assert tracker.completed_count == 1

    def test_terminal_status_cannot_go_back(self, tracker):
        tracker.update_file_state("a.3dm", FileStatus.RUNNING)
        tracker.update_file_state("a.3dm", FileStatus.PASS)

        assert not tracker.update_file_state("a.3dm", FileStatus.RUNNING)
        assert not tracker.update_file_state("a.3dm", FileStatus.FAIL)
        assert tracker.get_file_state("a.3dm").status is FileStatus.PASS

    def test_running_to_running_rejected(self, tracker):
        tracker.update_file_state("a.3dm", FileStatus.RUNNING)
        assert not tracker.update_file_state("a.3dm", FileStatus.RUNNING)

    def test_untracked_file_accepted(self, tracker):
        assert tracker.update_file_state("z.3dm", FileStatus.MISSING, "gone")
        assert tracker.get_file_state("z.3dm").status is FileStatus.MISSING

    def test_complete_batch(self, tracker):
        tracker.complete_batch()
        assert not tracker.is_processing


class TestCheckpoint:
    """Tests for checkpoint artifacts."""

    @pytest.mark.asyncio
    async def test_checkpoint_writes_snapshot(self, tracker):
        tracker.update_file_state("a.3dm", FileStatus.RUNNING)
        tracker.update_file_state("a.3dm", FileStatus.PASS)

        path = await tracker.checkpoint()

        assert path is not None
        assert path.name.startswith("checkpoint_")
        checkpoint = Checkpoint.model_validate_json(path.read_text())
        assert checkpoint.run_id == "run-1"
        assert checkpoint.total_files == 3
        assert checkpoint.completed_files == 1
        assert checkpoint.file_states["a.3dm"].status is FileStatus.PASS

    @pytest.mark.asyncio
    async def test_disabled_without_directory(self):
        tracker = StateTracker(None)
        tracker.initialize_batch(1, ["a.3dm"])
        assert await tracker.checkpoint() is None

    @pytest.mark.asyncio
    async def test_write_failure_is_not_fatal(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        tracker = StateTracker(blocker / "checkpoints")
        tracker.initialize_batch(1, ["a.3dm"])

        assert await tracker.checkpoint() is None

    @pytest.mark.asyncio
    async def test_maybe_checkpoint_respects_interval(self, tmp_path):
        clock = FakeClock()
        tracker = StateTracker(tmp_path, interval_seconds=60.0, clock=clock)
        tracker.initialize_batch(1, ["a.3dm"])

        assert await tracker.maybe_checkpoint() is not None
        clock.now = 30.0
        assert await tracker.maybe_checkpoint() is None
        clock.now = 61.0
        assert await tracker.maybe_checkpoint() is not None

    @pytest.mark.asyncio
    async def test_old_checkpoints_pruned(self, tmp_path):
        tracker = StateTracker(tmp_path, max_checkpoints=2)
        tracker.initialize_batch(1, ["a.3dm"])
        for _ in range(4):
            await tracker.checkpoint()

        assert len(tracker.list_checkpoints()) == 2

    @pytest.mark.asyncio
    async def test_checkpoint_is_valid_json_without_temp_leftovers(self, tracker):
        path = await tracker.checkpoint()
        assert path is not None
        json.loads(path.read_text())
        assert list(path.parent.glob("*.tmp")) == []

    def test_snapshot_is_a_copy(self, tracker):
        snapshot = tracker.snapshot()
        tracker.update_file_state("a.3dm", FileStatus.RUNNING)
        assert snapshot.file_states["a.3dm"].status is FileStatus.PENDING
