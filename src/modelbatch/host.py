"""Collaborators of the orchestrator and their default implementations.

The orchestrator depends only on the protocols below. The defaults drive a
host application through a command-line template, scan a directory by file
extension, and load configuration from a fixed YAML/JSON path.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Protocol, runtime_checkable

from modelbatch.core.config import BatchConfig, DirectoryConfig, HostConfig
from modelbatch.core.logging import get_logger
from modelbatch.execution.completion import signal_file_name
from modelbatch.execution.probe import ResourceSnapshot
from modelbatch.utils import utc_now

_logger = get_logger("host")


@dataclass
class DocumentHandle:
    """An opened model file in the host."""

    file_path: Path
    opened_at: datetime = field(default_factory=utc_now)
    process: asyncio.subprocess.Process | None = None

    @property
    def file_name(self) -> str:
        return self.file_path.name


@dataclass(frozen=True)
class OpenResult:
    success: bool
    handle: DocumentHandle | None
    message: str


@runtime_checkable
class DocumentHost(Protocol):
    """Opens model files, dispatches scripts into them and closes them.

    ``run_script`` is fire-and-forget: it returns once the script has been
    handed to the host. Completion is observed through signal files.
    """

    async def open(self, file_path: Path, directories: DirectoryConfig) -> OpenResult: ...

    async def run_script(self, handle: DocumentHandle, script_path: Path) -> None: ...

    async def close(self, handle: DocumentHandle, file_name: str) -> bool: ...


class FileScanner(Protocol):
    def scan(self, path: Path, name_filter: str | None = None) -> list[str]: ...


class ResourceProbe(Protocol):
    def snapshot(self) -> ResourceSnapshot: ...


class Reporter(Protocol):
    """Presentation layer receiving progress, status and error lines."""

    def progress(
        self,
        current: int,
        total: int,
        file_name: str,
        estimated_remaining_seconds: float | None,
    ) -> None: ...

    def message(self, text: str) -> None: ...

    def error(self, text: str) -> None: ...


class ConfigSource(Protocol):
    def select(self) -> Path | None: ...

    def load(self, path: Path) -> BatchConfig: ...

    def validate(self, config: BatchConfig) -> list[str]: ...


class Cleanup(Protocol):
    def cleanup(self) -> None: ...


class SubprocessHost:
    """Drives the host application by launching one process per dispatch.

    The command template (``HostConfig.command``) is formatted with
    ``{script}``, ``{file}``, ``{project}`` and ``{completion_dir}``; the
    same values are exported as ``MODELBATCH_*`` environment variables so a
    script can locate where to write its completion signal.
    """

    def __init__(self, config: HostConfig, project_name: str, completion_dir: Path) -> None:
        self.config = config
        self.project_name = project_name
        self.completion_dir = completion_dir

    async def open(self, file_path: Path, directories: DirectoryConfig) -> OpenResult:
        if not file_path.is_file():
            return OpenResult(False, None, f"File not found: {file_path}")
        if not os.access(file_path, os.R_OK):
            return OpenResult(False, None, f"File not readable: {file_path}")
        return OpenResult(True, DocumentHandle(file_path), f"Opened {file_path.name}")

    async def run_script(self, handle: DocumentHandle, script_path: Path) -> None:
        # A retry re-dispatches; the previous attempt must not keep running
        await self._terminate(handle)
        values = {
            "script": str(script_path),
            "file": str(handle.file_path),
            "project": self.project_name,
            "completion_dir": str(self.completion_dir),
        }
        argv = [part.format(**values) for part in self.config.command]
        env = {
            **os.environ,
            "MODELBATCH_SCRIPT": values["script"],
            "MODELBATCH_FILE": values["file"],
            "MODELBATCH_FILE_NAME": handle.file_name,
            "MODELBATCH_PROJECT": self.project_name,
            "MODELBATCH_COMPLETION_DIR": values["completion_dir"],
        }
        handle.process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            env=env,
        )
        _logger.info(
            "host.script_dispatched",
            file_name=handle.file_name,
            script=script_path.name,
            pid=handle.process.pid,
        )

    async def close(self, handle: DocumentHandle, file_name: str) -> bool:
        await self._terminate(handle)
        _logger.debug("host.closed", file_name=file_name)
        return True

    async def _terminate(self, handle: DocumentHandle) -> None:
        process = handle.process
        handle.process = None
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), self.config.terminate_grace_seconds)
            except TimeoutError:
                process.kill()
                await process.wait()
        except ProcessLookupError:
            return
        _logger.warning(
            "host.process_terminated",
            file_name=handle.file_name,
            pid=process.pid,
            returncode=process.returncode,
        )


class DirectoryScanner:
    """Lists model files in a directory by extension.

    Names are returned relative to the scanned directory, sorted, using
    forward slashes when ``recursive`` is set.
    """

    def __init__(self, file_extension: str, recursive: bool = False) -> None:
        ext = file_extension.lower()
        self.file_extension = ext if ext.startswith(".") else f".{ext}"
        self.recursive = recursive

    def scan(self, path: Path, name_filter: str | None = None) -> list[str]:
        """Raises ``NotADirectoryError``/``FileNotFoundError`` for a bad path."""
        if not path.exists():
            raise FileNotFoundError(f"Input directory not found: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")

        # Extensions compare case-insensitively, so filter after globbing
        pattern = "*"
        iterator = path.rglob(pattern) if self.recursive else path.glob(pattern)
        names: list[str] = []
        for file_path in iterator:
            if not file_path.is_file() or file_path.suffix.lower() != self.file_extension:
                continue
            if name_filter and not fnmatch(file_path.name, name_filter):
                continue
            names.append(file_path.relative_to(path).as_posix())
        names.sort(key=str.casefold)
        _logger.info(
            "scanner.scanned", path=str(path), found=len(names), name_filter=name_filter
        )
        return names


class FileConfigSource:
    """Configuration from a fixed file path.

    ``reprocess_mode`` and ``reference_log`` override the file's reprocess
    section, e.g. from command-line options.
    """

    def __init__(
        self,
        path: Path | None,
        *,
        reprocess_mode: str | None = None,
        reference_log: Path | None = None,
    ) -> None:
        self.path = path
        self.reprocess_mode = reprocess_mode
        self.reference_log = reference_log

    def select(self) -> Path | None:
        if self.path is None or not self.path.is_file():
            return None
        return self.path

    def load(self, path: Path) -> BatchConfig:
        config = BatchConfig.from_file(path)
        if self.reprocess_mode is not None:
            config.reprocess.mode = self.reprocess_mode
        if self.reference_log is not None:
            config.reprocess.reference_log = self.reference_log
        return config

    def validate(self, config: BatchConfig) -> list[str]:
        """Check the configured paths; returns a list of problems."""
        problems: list[str] = []
        dirs = config.directories
        if not dirs.input_dir.is_dir():
            problems.append(f"Input directory does not exist: {dirs.input_dir}")
        if not config.script.path.is_file():
            problems.append(f"Script not found: {config.script.path}")
        try:
            dirs.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            problems.append(f"Output directory not writable: {dirs.output_dir} ({e})")
        if dirs.input_dir.resolve() == dirs.output_dir.resolve():
            problems.append("Output directory must not be the input directory")
        return problems


class TransientArtifactCleaner:
    """Removes per-run leftovers: unconsumed signals, temp files, cancel sentinel."""

    def __init__(self, output_dir: Path, project_name: str, cancel_file_name: str) -> None:
        self.output_dir = output_dir
        self.project_name = project_name
        self.cancel_file_name = cancel_file_name

    def cleanup(self) -> None:
        removed = 0
        completion_dir = self.output_dir / "completion"
        suffixes = (
            signal_file_name("", self.project_name, "PASS"),
            signal_file_name("", self.project_name, "FAIL"),
        )
        candidates: list[Path] = []
        if completion_dir.is_dir():
            candidates.extend(
                p for p in completion_dir.iterdir() if p.name.endswith(suffixes)
            )
            candidates.extend(completion_dir.glob(".*.tmp"))
        candidates.append(self.output_dir / self.cancel_file_name)
        for path in candidates:
            try:
                if path.is_file():
                    path.unlink()
                    removed += 1
            except OSError as e:
                _logger.warning("cleanup.remove_failed", path=str(path), error=str(e))
        _logger.info("cleanup.completed", removed=removed)


class LogReporter:
    """Reporter that writes everything to the structured log."""

    def progress(
        self,
        current: int,
        total: int,
        file_name: str,
        estimated_remaining_seconds: float | None,
    ) -> None:
        _logger.info(
            "progress",
            current=current,
            total=total,
            file_name=file_name,
            eta_seconds=estimated_remaining_seconds,
        )

    def message(self, text: str) -> None:
        _logger.info("message", text=text)

    def error(self, text: str) -> None:
        _logger.error("error", text=text)


__all__ = [
    "Cleanup",
    "ConfigSource",
    "DirectoryScanner",
    "DocumentHandle",
    "DocumentHost",
    "FileConfigSource",
    "FileScanner",
    "LogReporter",
    "OpenResult",
    "Reporter",
    "ResourceProbe",
    "SubprocessHost",
    "TransientArtifactCleaner",
]
