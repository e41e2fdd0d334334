"""Configuration models.

Re-exports all public config models so callers can use
``from modelbatch.core.config import BatchConfig``.
"""

from modelbatch.core.config.batch import (
    BatchConfig,
    DirectoryConfig,
    HostConfig,
    LoggingConfig,
    ReprocessConfig,
    ScriptConfig,
)
from modelbatch.core.config.execution import (
    BackoffPolicy,
    CheckpointConfig,
    CircuitBreakerConfig,
    MonitorConfig,
    RetryConfig,
    TimeoutConfig,
)

__all__ = [
    "BackoffPolicy",
    "BatchConfig",
    "CheckpointConfig",
    "CircuitBreakerConfig",
    "DirectoryConfig",
    "HostConfig",
    "LoggingConfig",
    "MonitorConfig",
    "ReprocessConfig",
    "RetryConfig",
    "ScriptConfig",
    "TimeoutConfig",
]
