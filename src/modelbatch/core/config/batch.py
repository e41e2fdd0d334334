"""Top-level batch configuration model and loader."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from modelbatch.core.config.execution import (
    CheckpointConfig,
    CircuitBreakerConfig,
    MonitorConfig,
    RetryConfig,
    TimeoutConfig,
)
from modelbatch.core.errors import ConfigError


class DirectoryConfig(BaseModel):
    """Input and output locations."""

    input_dir: Path = Field(description="Directory scanned for model files")
    output_dir: Path = Field(description="Run output: signals, logs, checkpoints")
    checkpoint_dir: Path | None = Field(
        default=None, description="Defaults to <output_dir>/checkpoints"
    )

    @property
    def completion_dir(self) -> Path:
        return self.output_dir / "completion"

    @property
    def log_dir(self) -> Path:
        return self.output_dir / "logs"

    def resolved_checkpoint_dir(self) -> Path:
        return self.checkpoint_dir or self.output_dir / "checkpoints"


class ScriptConfig(BaseModel):
    """Script dispatched into the host once per model file."""

    path: Path
    file_extension: str = Field(default=".3dm", description="Model file extension")
    name_filter: str | None = Field(
        default=None, description="Glob applied to file names, e.g. 'L0*'"
    )
    recursive: bool = False


class HostConfig(BaseModel):
    """How the host application is driven.

    ``command`` is an argument template; ``{script}``, ``{file}``,
    ``{project}`` and ``{completion_dir}`` are substituted per dispatch.
    """

    command: list[str] = Field(min_length=1)
    terminate_grace_seconds: float = Field(default=10.0, ge=0)


class ReprocessConfig(BaseModel):
    """Reprocess selection against a prior run log.

    ``mode`` is validated by the selector so an invalid value is reported as
    a failed selection rather than a load error.
    """

    mode: str = "ALL"
    reference_log: Path | None = None


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["console", "json", "both"] = "console"
    file: Path | None = None
    max_file_size_mb: int = Field(default=50, ge=1)
    backup_count: int = Field(default=5, ge=0)


class BatchConfig(BaseModel):
    """Complete configuration for one batch run."""

    project_name: str = Field(min_length=1, pattern=r"^[A-Za-z0-9._-]+$")
    directories: DirectoryConfig
    script: ScriptConfig
    host: HostConfig
    timeout: TimeoutConfig = Field(default_factory=TimeoutConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    reprocess: ReprocessConfig = Field(default_factory=ReprocessConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path) -> BatchConfig:
        """Load a YAML or JSON config file.

        Relative paths inside the file resolve against the file's directory.

        Raises:
            ConfigError: If the file cannot be read, parsed or validated.
        """
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(str(e), path) from e
        try:
            if path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigError(f"parse error: {e}", path) from e
        if not isinstance(data, dict):
            raise ConfigError("top-level value must be a mapping", path)
        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path | None = None) -> BatchConfig:
        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(_format_validation_error(e)) from e
        if base_dir is not None:
            config._resolve_paths(base_dir)
        return config

    def _resolve_paths(self, base_dir: Path) -> None:
        def resolve(p: Path) -> Path:
            return p if p.is_absolute() else (base_dir / p).resolve()

        dirs = self.directories
        dirs.input_dir = resolve(dirs.input_dir)
        dirs.output_dir = resolve(dirs.output_dir)
        if dirs.checkpoint_dir is not None:
            dirs.checkpoint_dir = resolve(dirs.checkpoint_dir)
        self.script.path = resolve(self.script.path)
        if self.reprocess.reference_log is not None:
            self.reprocess.reference_log = resolve(self.reprocess.reference_log)
        if self.logging.file is not None:
            self.logging.file = resolve(self.logging.file)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)
