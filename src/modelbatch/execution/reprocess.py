"""Reprocess selection against a prior run log.

Modes:
- ``ALL``: every candidate; no reference run needed.
- ``RESUME``: candidates with no terminal PASS/FAIL outcome in the reference run.
- ``PASS``: candidates whose reference outcome was PASS.
- ``FAIL``: candidates whose reference outcome was FAIL. TIMEOUT and MISSING
  outcomes are not terminal PASS/FAIL, so RESUME picks them up.

Selection fails closed: an invalid mode or an unreadable reference run
yields an empty selection and an error, never the unfiltered candidates.
File names compare case-insensitively; candidate order is preserved.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from modelbatch.core.errors import (
    InvalidReprocessModeError,
    ReferenceLogError,
)
from modelbatch.core.logging import get_logger
from modelbatch.core.models import BatchRun, FileStatus

_logger = get_logger("reprocess")


class ReprocessMode(str, Enum):
    ALL = "ALL"
    RESUME = "RESUME"
    PASS = "PASS"
    FAIL = "FAIL"

    @classmethod
    def parse(cls, value: str | ReprocessMode) -> ReprocessMode:
        """Case-insensitive lookup.

        Raises:
            InvalidReprocessModeError: For any other value.
        """
        if isinstance(value, ReprocessMode):
            return value
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            raise InvalidReprocessModeError(str(value)) from None


@dataclass
class SelectionResult:
    files: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReprocessSelector:
    """Filters the scanned candidate files by a prior run's outcomes."""

    def __init__(self) -> None:
        self._processed: set[str] = set()

    def select_files(
        self,
        mode: str | ReprocessMode,
        reference: BatchRun | Path | None,
        candidates: Sequence[str],
    ) -> SelectionResult:
        try:
            parsed = ReprocessMode.parse(mode)
        except InvalidReprocessModeError as e:
            _logger.error("reprocess.invalid_mode", mode=str(mode))
            return SelectionResult(error=str(e))

        if parsed is ReprocessMode.ALL:
            return SelectionResult(files=list(candidates))

        try:
            run = self._load_reference(reference)
        except ReferenceLogError as e:
            _logger.error(
                "reprocess.reference_unavailable",
                mode=parsed.value,
                path=str(e.path),
                reason=e.reason,
            )
            return SelectionResult(error=str(e))

        last_status = _last_status_by_name(run)
        if parsed is ReprocessMode.RESUME:
            self._processed = {
                name
                for name, status in last_status.items()
                if status in (FileStatus.PASS, FileStatus.FAIL)
            }
            files = [c for c in candidates if c.casefold() not in self._processed]
        elif parsed is ReprocessMode.PASS:
            files = _matching(candidates, last_status, lambda s: s is FileStatus.PASS)
        else:
            files = _matching(candidates, last_status, lambda s: s is FileStatus.FAIL)

        _logger.info(
            "reprocess.selected",
            mode=parsed.value,
            candidates=len(candidates),
            selected=len(files),
            reference_run_id=run.run_id,
        )
        return SelectionResult(files=files)

    def was_previously_processed(self, file_name: str) -> bool:
        """Whether the last RESUME selection excluded ``file_name``."""
        return file_name.casefold() in self._processed

    @staticmethod
    def _load_reference(reference: BatchRun | Path | None) -> BatchRun:
        if reference is None:
            raise ReferenceLogError(Path("<none>"), "no reference log configured")
        if isinstance(reference, BatchRun):
            return reference
        if not reference.is_file():
            raise ReferenceLogError(reference, "file not found")
        return BatchRun.load(reference)


def _last_status_by_name(run: BatchRun) -> dict[str, FileStatus]:
    statuses: dict[str, FileStatus] = {}
    for outcome in run.file_outcomes:
        statuses[outcome.file_name.casefold()] = outcome.status
    return statuses


def _matching(
    candidates: Iterable[str],
    statuses: dict[str, FileStatus],
    predicate: Callable[[FileStatus], bool],
) -> list[str]:
    selected = []
    for name in candidates:
        status = statuses.get(name.casefold())
        if status is not None and predicate(status):
            selected.append(name)
    return selected


__all__ = ["ReprocessMode", "ReprocessSelector", "SelectionResult"]
