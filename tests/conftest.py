"""Pytest fixtures for modelbatch tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from modelbatch.core.logging import clear_context


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset CLI logging state, structlog and root handlers around each test."""
    from modelbatch.cli import helpers as cli_helpers

    cli_helpers.reset_logging_state()
    structlog.reset_defaults()
    clear_context()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_logging_state()
    structlog.reset_defaults()
    clear_context()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Input directory, output directory and a script file under tmp_path."""
    (tmp_path / "models").mkdir()
    (tmp_path / "out").mkdir()
    (tmp_path / "export.py").write_text("# host-side export script\n")
    return tmp_path


@pytest.fixture
def sample_config_dict(workspace: Path) -> dict:
    """A valid configuration dictionary using the workspace paths."""
    return {
        "project_name": "tower-a",
        "directories": {
            "input_dir": str(workspace / "models"),
            "output_dir": str(workspace / "out"),
        },
        "script": {"path": str(workspace / "export.py"), "file_extension": ".3dm"},
        "host": {"command": ["host-app", "--run", "{script}", "{file}"]},
        "timeout": {"default_seconds": 0.3, "poll_interval_seconds": 0.01},
        "retry": {"max_retries": 1, "base_delay_seconds": 0.0, "max_delay_seconds": 0.0},
        "circuit_breaker": {"enabled": False},
        "monitor": {"interval_seconds": 0.01},
    }
