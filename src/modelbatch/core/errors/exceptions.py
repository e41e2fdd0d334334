"""Exception hierarchy for modelbatch.

Expected per-file failures travel as result values; these exceptions cover
conditions a caller has to handle explicitly (bad configuration, unreadable
reference logs, misuse of a finalized run).
"""

from __future__ import annotations

from pathlib import Path


class ModelBatchError(Exception):
    """Base class for all modelbatch errors."""


class ConfigError(ModelBatchError):
    """Configuration could not be loaded or failed validation."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class ReferenceLogError(ModelBatchError):
    """A prior run log is missing, unreadable or malformed."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load reference log {path}: {reason}")


class InvalidReprocessModeError(ModelBatchError, ValueError):
    """Reprocess mode string is not one of ALL, RESUME, PASS or FAIL."""

    def __init__(self, mode: str) -> None:
        self.mode = mode
        super().__init__(
            f"Invalid reprocess mode {mode!r}; expected ALL, RESUME, PASS or FAIL"
        )


class RunFinalizedError(ModelBatchError):
    """Mutation attempted on a BatchRun that was already finalized."""
