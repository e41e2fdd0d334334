"""Tests for modelbatch.core.logging module."""

import gzip
import json
from pathlib import Path

import pytest

from modelbatch.core.logging import (
    CompressingRotatingFileHandler,
    ExecutionContext,
    _add_context,
    _sanitize_event_dict,
    configure_logging,
    get_current_context,
    get_default_log_path,
    get_logger,
    with_context,
)


class TestExecutionContext:
    def test_with_file_resets_attempt(self):
        ctx = ExecutionContext(project="tower-a", run_id="r1").with_attempt(2)
        file_ctx = ctx.with_file("L01.3dm")
        assert file_ctx.file_name == "L01.3dm"
        assert file_ctx.attempt is None
        assert ctx.file_name is None

    def test_to_dict_omits_unset(self):
        ctx = ExecutionContext(project="tower-a", run_id="r1")
        assert ctx.to_dict() == {"project": "tower-a", "run_id": "r1", "component": "unknown"}

    def test_with_context_restores_previous(self):
        outer = ExecutionContext(project="tower-a", run_id="r1")
        with with_context(outer):
            with with_context(outer.with_file("L01.3dm")):
                assert get_current_context().file_name == "L01.3dm"
            assert get_current_context() is outer
        assert get_current_context() is None


class TestProcessors:
    def test_context_fields_added(self):
        ctx = ExecutionContext(project="tower-a", run_id="r1").with_file("L01.3dm")
        with with_context(ctx):
            event = _add_context(None, "info", {"event": "file.completed"})
        assert event["file_name"] == "L01.3dm"
        assert event["run_id"] == "r1"

    def test_bound_fields_win_over_context(self):
        with with_context(ExecutionContext(project="tower-a", component="ctx")):
            event = _add_context(None, "info", {"event": "x", "component": "retry"})
        assert event["component"] == "retry"

    def test_sensitive_fields_redacted(self):
        event = _sanitize_event_dict(
            None, "info", {"event": "x", "api_key": "abc", "env": {"PASSWORD": "p", "PATH": "/bin"}}
        )
        assert event["api_key"] == "[REDACTED]"
        assert event["env"] == {"PASSWORD": "[REDACTED]", "PATH": "/bin"}


class TestConfigureLogging:
    def test_json_file_output_includes_context(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "modelbatch.log"
        configure_logging(level="INFO", format="json", file_path=log_file)
        logger = get_logger("orchestrator")

        with with_context(ExecutionContext(project="tower-a", run_id="r1")):
            logger.info("batch.started", total_files=3)
        logger.debug("hidden.below_level")

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert len(lines) == 1
        entry = lines[0]
        assert entry["event"] == "batch.started"
        assert entry["component"] == "orchestrator"
        assert entry["project"] == "tower-a"
        assert entry["total_files"] == 3
        assert "timestamp" in entry

    def test_both_requires_file(self):
        with pytest.raises(ValueError):
            configure_logging(format="both")

    def test_bind_adds_fields(self, tmp_path: Path):
        log_file = tmp_path / "log.jsonl"
        configure_logging(level="DEBUG", format="json", file_path=log_file)

        get_logger("retry").bind(key="L01.3dm").warning("retry.scheduled")

        entry = json.loads(log_file.read_text().splitlines()[0])
        assert entry["key"] == "L01.3dm"
        assert entry["level"] == "warning"

    def test_default_log_path(self, tmp_path: Path):
        assert get_default_log_path(tmp_path) == tmp_path / "logs" / "modelbatch.log"


class TestCompressingRotatingFileHandler:
    def test_rollover_compresses(self, tmp_path: Path):
        path = tmp_path / "modelbatch.log"
        handler = CompressingRotatingFileHandler(path, maxBytes=10, backupCount=2)
        try:
            path.write_text("first generation\n")
            handler.doRollover()

            rotated = tmp_path / "modelbatch.log.1.gz"
            assert rotated.exists()
            with gzip.open(rotated, "rt") as f:
                assert f.read() == "first generation\n"
            assert rotated in handler.get_log_files()
        finally:
            handler.close()
