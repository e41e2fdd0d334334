"""Tests for modelbatch.core.config package."""

import json
from pathlib import Path

import pytest
import yaml

from modelbatch.core.config import (
    BackoffPolicy,
    BatchConfig,
    RetryConfig,
    TimeoutConfig,
)
from modelbatch.core.errors import ConfigError


class TestBatchConfig:
    def test_from_dict(self, sample_config_dict):
        config = BatchConfig.from_dict(sample_config_dict)
        assert config.project_name == "tower-a"
        assert config.retry.max_retries == 1
        assert config.reprocess.mode == "ALL"

    def test_defaults(self, sample_config_dict):
        for key in ("timeout", "retry", "circuit_breaker", "monitor"):
            del sample_config_dict[key]
        config = BatchConfig.from_dict(sample_config_dict)

        assert config.timeout.default_seconds == 480.0
        assert config.timeout.required_samples == 3
        assert config.timeout.buffer_factor == 1.5
        assert config.retry.max_retries == 3
        assert config.retry.policy is BackoffPolicy.EXPONENTIAL
        assert config.circuit_breaker.cpu_threshold_percent == 90.0
        assert config.circuit_breaker.memory_threshold_percent == 85.0
        assert config.circuit_breaker.failure_threshold == 5
        assert config.monitor.cancel_file_name == "CANCEL"

    def test_derived_directories(self, sample_config_dict, workspace):
        config = BatchConfig.from_dict(sample_config_dict)
        dirs = config.directories
        assert dirs.completion_dir == workspace / "out" / "completion"
        assert dirs.log_dir == workspace / "out" / "logs"
        assert dirs.resolved_checkpoint_dir() == workspace / "out" / "checkpoints"

    def test_invalid_project_name(self, sample_config_dict):
        sample_config_dict["project_name"] = "tower a/1"
        with pytest.raises(ConfigError, match="project_name"):
            BatchConfig.from_dict(sample_config_dict)

    def test_missing_section(self, sample_config_dict):
        del sample_config_dict["host"]
        with pytest.raises(ConfigError, match="host"):
            BatchConfig.from_dict(sample_config_dict)


class TestFromFile:
    def test_yaml_with_relative_paths(self, workspace: Path):
        path = workspace / "batch.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "project_name": "tower-a",
                    "directories": {"input_dir": "models", "output_dir": "out"},
                    "script": {"path": "export.py"},
                    "host": {"command": ["host-app", "{script}", "{file}"]},
                    "reprocess": {"mode": "resume", "reference_log": "out/logs/prev.json"},
                }
            )
        )

        config = BatchConfig.from_file(path)

        assert config.directories.input_dir == (workspace / "models").resolve()
        assert config.script.path == (workspace / "export.py").resolve()
        assert config.reprocess.reference_log == (workspace / "out/logs/prev.json").resolve()

    def test_json(self, workspace: Path, sample_config_dict):
        path = workspace / "batch.json"
        path.write_text(json.dumps(sample_config_dict))
        assert BatchConfig.from_file(path).project_name == "tower-a"

    def test_unparsable_yaml(self, workspace: Path):
        path = workspace / "batch.yaml"
        path.write_text("project_name: [unclosed")
        with pytest.raises(ConfigError, match="parse error"):
            BatchConfig.from_file(path)

    def test_non_mapping(self, workspace: Path):
        path = workspace / "batch.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            BatchConfig.from_file(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError):
            BatchConfig.from_file(tmp_path / "absent.yaml")


class TestExecutionConfigValidation:
    def test_required_samples_bounded_by_history(self):
        with pytest.raises(ValueError, match="required_samples"):
            TimeoutConfig(required_samples=6, history_size=5)

    def test_base_delay_bounded_by_max(self):
        with pytest.raises(ValueError, match="base_delay_seconds"):
            RetryConfig(base_delay_seconds=60.0, max_delay_seconds=30.0)
