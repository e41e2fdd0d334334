"""Tests for modelbatch.host default collaborators."""

import asyncio
import sys
from pathlib import Path

import pytest
import yaml

from modelbatch.core.config import BatchConfig, HostConfig
from modelbatch.execution.completion import CompletionDetector, write_completion_signal
from modelbatch.execution.timeout import TimeoutEstimator
from modelbatch.host import (
    DirectoryScanner,
    DocumentHost,
    FileConfigSource,
    SubprocessHost,
    TransientArtifactCleaner,
)
from tests.helpers import SIGNAL_SCRIPT


class TestDirectoryScanner:
    """Tests for extension filtering and ordering."""

    def test_filters_by_extension_case_insensitively(self, tmp_path: Path):
        for name in ("b.3dm", "A.3DM", "notes.txt", "c.3dm.bak"):
            (tmp_path / name).write_text("x")

        names = DirectoryScanner(".3dm").scan(tmp_path)

        assert names == ["A.3DM", "b.3dm"]

    def test_name_filter(self, tmp_path: Path):
        for name in ("L01.3dm", "L02.3dm", "S01.3dm"):
            (tmp_path / name).write_text("x")
        assert DirectoryScanner("3dm").scan(tmp_path, "L*") == ["L01.3dm", "L02.3dm"]

    def test_recursive_uses_relative_posix_names(self, tmp_path: Path):
        (tmp_path / "level1").mkdir()
        (tmp_path / "level1" / "L01.3dm").write_text("x")
        (tmp_path / "root.3dm").write_text("x")

        assert DirectoryScanner(".3dm").scan(tmp_path) == ["root.3dm"]
        assert DirectoryScanner(".3dm", recursive=True).scan(tmp_path) == [
            "level1/L01.3dm",
            "root.3dm",
        ]

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            DirectoryScanner(".3dm").scan(tmp_path / "absent")


class TestFileConfigSource:
    def test_select_requires_existing_file(self, tmp_path: Path):
        assert FileConfigSource(tmp_path / "absent.yaml").select() is None
        assert FileConfigSource(None).select() is None

    def test_validate_valid(self, sample_config_dict):
        config = BatchConfig.from_dict(sample_config_dict)
        assert FileConfigSource(None).validate(config) == []

    def test_validate_reports_problems(self, sample_config_dict, workspace: Path):
        sample_config_dict["directories"]["output_dir"] = str(workspace / "models")
        sample_config_dict["script"]["path"] = str(workspace / "missing.py")
        config = BatchConfig.from_dict(sample_config_dict)

        problems = FileConfigSource(None).validate(config)

        assert any("Script not found" in p for p in problems)
        assert any("must not be the input directory" in p for p in problems)

    def test_load_applies_overrides(self, sample_config_dict, workspace: Path):
        path = workspace / "batch.yaml"
        path.write_text(yaml.safe_dump(sample_config_dict))
        source = FileConfigSource(
            path, reprocess_mode="FAIL", reference_log=workspace / "prev.json"
        )

        config = source.load(path)

        assert config.reprocess.mode == "FAIL"
        assert config.reprocess.reference_log == workspace / "prev.json"


class TestTransientArtifactCleaner:
    def test_removes_project_signals_temp_files_and_sentinel(self, tmp_path: Path):
        completion = tmp_path / "completion"
        mine = write_completion_signal(completion, "a.3dm", "tower-a", True)
        theirs = write_completion_signal(completion, "a.3dm", "tower-b", True)
        temp = completion / ".a.3dm_tower-a_PASS.json.123.tmp"
        temp.write_text("")
        sentinel = tmp_path / "CANCEL"
        sentinel.write_text("")

        TransientArtifactCleaner(tmp_path, "tower-a", "CANCEL").cleanup()

        assert not mine.exists()
        assert not temp.exists()
        assert not sentinel.exists()
        assert theirs.exists()


class TestSubprocessHost:
    """Drives a real child process through the command template."""

    def test_satisfies_protocol(self, tmp_path: Path):
        host = SubprocessHost(HostConfig(command=["true"]), "tower-a", tmp_path)
        assert isinstance(host, DocumentHost)

    @pytest.mark.asyncio
    async def test_open_missing_file(self, tmp_path: Path, sample_config_dict):
        config = BatchConfig.from_dict(sample_config_dict)
        host = SubprocessHost(config.host, "tower-a", tmp_path)
        result = await host.open(tmp_path / "absent.3dm", config.directories)
        assert not result.success
        assert result.handle is None

    @pytest.mark.asyncio
    async def test_script_writes_completion_signal(self, workspace: Path, sample_config_dict):
        script = workspace / "export.py"
        script.write_text(SIGNAL_SCRIPT)
        model = workspace / "models" / "L01.3dm"
        model.write_text("x")
        config = BatchConfig.from_dict(sample_config_dict)
        completion_dir = config.directories.completion_dir
        host = SubprocessHost(
            HostConfig(command=[sys.executable, "{script}", "{file}"]),
            config.project_name,
            completion_dir,
        )
        detector = CompletionDetector(
            completion_dir,
            config.project_name,
            TimeoutEstimator(default_timeout_seconds=30.0),
            poll_interval=0.02,
        )

        opened = await host.open(model, config.directories)
        assert opened.success and opened.handle is not None
        await host.run_script(opened.handle, script)
        result = await detector.await_completion("L01.3dm", script.name)
        assert await host.close(opened.handle, "L01.3dm")

        assert result.success
        assert result.details == "exported"

    @pytest.mark.asyncio
    async def test_close_terminates_running_process(self, tmp_path: Path, sample_config_dict):
        config = BatchConfig.from_dict(sample_config_dict)
        model = tmp_path / "L01.3dm"
        model.write_text("x")
        host = SubprocessHost(
            HostConfig(
                command=[sys.executable, "-c", "import time; time.sleep(60)"],
                terminate_grace_seconds=5.0,
            ),
            "tower-a",
            tmp_path,
        )
        opened = await host.open(model, config.directories)
        await host.run_script(opened.handle, tmp_path / "unused.py")
        process = opened.handle.process

        await asyncio.wait_for(host.close(opened.handle, "L01.3dm"), timeout=10.0)

        assert process.returncode is not None
        assert opened.handle.process is None
