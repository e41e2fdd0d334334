"""Timeout, retry, circuit breaker, checkpoint and monitor configuration."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class BackoffPolicy(str, Enum):
    """Delay growth between retry attempts."""

    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class TimeoutConfig(BaseModel):
    """Adaptive completion timeout settings."""

    default_seconds: float = Field(
        default=480.0, gt=0, description="Timeout used until enough history exists"
    )
    required_samples: int = Field(
        default=3, ge=1, description="Successful samples needed for an adaptive timeout"
    )
    buffer_factor: float = Field(
        default=1.5, ge=1.0, description="Multiplier applied to the mean duration"
    )
    history_size: int = Field(default=5, ge=1, description="Samples kept per key")
    max_age_hours: float = Field(
        default=24.0, gt=0, description="Samples older than this are evicted"
    )
    poll_interval_seconds: float = Field(
        default=0.1, gt=0, description="Completion signal polling interval"
    )
    key_by: Literal["file", "script"] = Field(
        default="script",
        description="Share timeout history across files running the same script, or keep it per file",
    )

    @model_validator(mode="after")
    def _validate_history(self) -> TimeoutConfig:
        if self.required_samples > self.history_size:
            raise ValueError(
                f"required_samples ({self.required_samples}) must not exceed "
                f"history_size ({self.history_size})"
            )
        return self


class RetryConfig(BaseModel):
    """Retry budget and backoff for one file's dispatch-and-wait cycle."""

    max_retries: int = Field(
        default=3, ge=1, description="Total attempts per file, including the first"
    )
    policy: BackoffPolicy = Field(default=BackoffPolicy.EXPONENTIAL)
    base_delay_seconds: float = Field(default=5.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    jitter: bool = Field(default=True, description="Apply +/-10% jitter to delays")

    @model_validator(mode="after")
    def _validate_delay_range(self) -> RetryConfig:
        if self.base_delay_seconds > self.max_delay_seconds:
            raise ValueError(
                f"base_delay_seconds ({self.base_delay_seconds}) must not exceed "
                f"max_delay_seconds ({self.max_delay_seconds})"
            )
        return self


class CircuitBreakerConfig(BaseModel):
    """Resource circuit breaker.

    The breaker counts consecutive resource snapshots above either threshold.
    At ``failure_threshold`` breaches it opens and processing pauses until
    ``reset_timeout_seconds`` have passed since the last breach.
    """

    enabled: bool = True
    cpu_threshold_percent: float = Field(default=90.0, gt=0, le=100)
    memory_threshold_percent: float = Field(default=85.0, gt=0, le=100)
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_seconds: float = Field(default=900.0, gt=0)
    pause_seconds: float = Field(
        default=5.0, gt=0, description="Re-check interval while the breaker refuses work"
    )


class CheckpointConfig(BaseModel):
    """Diagnostic checkpoint artifacts."""

    enabled: bool = True
    interval_seconds: float = Field(
        default=0.0, ge=0, description="Minimum spacing between checkpoints; 0 = every file"
    )
    max_checkpoints: int = Field(default=20, ge=1, description="Artifacts kept on disk")


class MonitorConfig(BaseModel):
    """Background monitor for cancellation and resource snapshots."""

    interval_seconds: float = Field(default=1.0, gt=0)
    cancel_file_name: str = Field(
        default="CANCEL",
        description="Sentinel file in the output directory that requests cancellation",
    )
    max_snapshots: int = Field(default=1000, ge=1)
