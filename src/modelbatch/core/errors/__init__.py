"""Error classification and handling.

Re-exports the public error types so callers import from one place.
"""

from modelbatch.core.errors.codes import (
    DEFAULT_RECOVERY_TABLE,
    ErrorCategory,
    RecoveryAction,
    RecoveryDelays,
    Severity,
)
from modelbatch.core.errors.exceptions import (
    ConfigError,
    InvalidReprocessModeError,
    ModelBatchError,
    ReferenceLogError,
    RunFinalizedError,
)
from modelbatch.core.errors.classifier import (
    BatchErrorAnalysis,
    ErrorClassifier,
    ErrorRecord,
    ErrorResponse,
    ErrorStats,
)

__all__ = [
    "DEFAULT_RECOVERY_TABLE",
    "ErrorCategory",
    "RecoveryAction",
    "RecoveryDelays",
    "Severity",
    "ConfigError",
    "InvalidReprocessModeError",
    "ModelBatchError",
    "ReferenceLogError",
    "RunFinalizedError",
    "BatchErrorAnalysis",
    "ErrorClassifier",
    "ErrorRecord",
    "ErrorResponse",
    "ErrorStats",
]
