"""Per-file lifecycle state and diagnostic checkpoints.

``StateTracker`` is the only writer of per-file status during a run.
Transitions are monotonic: PENDING -> RUNNING -> one terminal status. A
request to move a file backward, or from one terminal status to another,
is rejected and logged.

Checkpoints are point-in-time JSON snapshots written to
``checkpoint_YYYYmmdd_HHMMSS_ffffff.json``. They exist for operators and
crash diagnosis and are never read back by the engine; a failed write is
logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from modelbatch.core.logging import get_logger
from modelbatch.core.models import STATUS_RANK, Checkpoint, FileState, FileStatus
from modelbatch.utils import atomic_write_text, utc_now

_logger = get_logger("state")

CHECKPOINT_PREFIX = "checkpoint_"


class StateTracker:
    """Tracks file states for one run and writes checkpoints.

    Args:
        checkpoint_dir: Where checkpoints go; None disables checkpointing.
        run_id: Run identifier recorded in each checkpoint.
        interval_seconds: Minimum spacing for ``maybe_checkpoint``.
        max_checkpoints: Older checkpoint files beyond this are removed.
        clock: Monotonic time source for checkpoint spacing.
    """

    def __init__(
        self,
        checkpoint_dir: Path | None,
        *,
        run_id: str | None = None,
        interval_seconds: float = 0.0,
        max_checkpoints: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.checkpoint_dir = checkpoint_dir
        self.run_id = run_id
        self.interval_seconds = interval_seconds
        self.max_checkpoints = max_checkpoints
        self._clock = clock
        self._states: dict[str, FileState] = {}
        self._total = 0
        self._processing = False
        self._last_checkpoint_at: float | None = None

    @property
    def total_count(self) -> int:
        return self._total

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self._states.values() if s.status.is_terminal)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def initialize_batch(self, total_count: int, file_names: Iterable[str] = ()) -> None:
        """Start tracking a run of ``total_count`` files, all PENDING."""
        self._states = {name: FileState(file_name=name) for name in file_names}
        self._total = total_count
        self._processing = True
        self._last_checkpoint_at = None
        _logger.info("state.batch_initialized", total_files=total_count)

    def update_file_state(
        self, file_name: str, status: FileStatus, details: str = ""
    ) -> bool:
        """Move ``file_name`` to ``status``; return False if the move is backward."""
        current = self._states.get(file_name)
        if current is not None and not _allowed(current.status, status):
            _logger.warning(
                "state.transition_rejected",
                file_name=file_name,
                from_status=current.status.value,
                to_status=status.value,
            )
            return False
        self._states[file_name] = FileState(
            file_name=file_name,
            status=status,
            last_update_time=utc_now(),
            details=details,
        )
        _logger.debug("state.file_updated", file_name=file_name, status=status.value)
        return True

    def get_file_state(self, file_name: str) -> FileState | None:
        return self._states.get(file_name)

    def file_states(self) -> dict[str, FileState]:
        return dict(self._states)

    def complete_batch(self) -> None:
        self._processing = False
        _logger.info(
            "state.batch_completed",
            total_files=self._total,
            completed_files=self.completed_count,
        )

    def snapshot(self) -> Checkpoint:
        """Consistent copy of the current state."""
        return Checkpoint(
            timestamp=utc_now(),
            run_id=self.run_id,
            total_files=self._total,
            completed_files=self.completed_count,
            is_processing=self._processing,
            file_states={k: v.model_copy() for k, v in self._states.items()},
        )

    async def checkpoint(self) -> Path | None:
        """Write a checkpoint now. Returns its path, or None if not written."""
        if self.checkpoint_dir is None:
            return None
        snapshot = self.snapshot()
        path = self.checkpoint_dir / (
            f"{CHECKPOINT_PREFIX}{snapshot.timestamp:%Y%m%d_%H%M%S_%f}.json"
        )
        payload = snapshot.model_dump_json(indent=2)
        self._last_checkpoint_at = self._clock()
        try:
            await asyncio.to_thread(atomic_write_text, path, payload)
        except OSError as e:
            _logger.error("state.checkpoint_failed", path=str(path), error=str(e))
            return None
        _logger.debug(
            "state.checkpoint_written",
            path=str(path),
            completed_files=snapshot.completed_files,
        )
        self._prune()
        return path

    async def maybe_checkpoint(self) -> Path | None:
        """Checkpoint if ``interval_seconds`` passed since the last one."""
        if (
            self._last_checkpoint_at is not None
            and self._clock() - self._last_checkpoint_at < self.interval_seconds
        ):
            return None
        return await self.checkpoint()

    def list_checkpoints(self) -> list[Path]:
        """Checkpoint files, oldest first."""
        if self.checkpoint_dir is None or not self.checkpoint_dir.is_dir():
            return []
        return sorted(self.checkpoint_dir.glob(f"{CHECKPOINT_PREFIX}*.json"))

    def _prune(self) -> None:
        existing = self.list_checkpoints()
        for stale in existing[: max(0, len(existing) - self.max_checkpoints)]:
            try:
                stale.unlink()
            except OSError as e:
                _logger.warning("state.prune_failed", path=str(stale), error=str(e))


def _allowed(current: FileStatus, new: FileStatus) -> bool:
    if current is new:
        return not current.is_terminal
    return STATUS_RANK[new] > STATUS_RANK[current]


__all__ = ["CHECKPOINT_PREFIX", "StateTracker"]
