"""Shared fakes for modelbatch tests."""

from __future__ import annotations

import asyncio
import textwrap
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from modelbatch.core.config import BatchConfig, DirectoryConfig
from modelbatch.core.errors import (
    DEFAULT_RECOVERY_TABLE,
    ErrorCategory,
    ErrorClassifier,
    RecoveryAction,
)
from modelbatch.execution.cancellation import CancellationToken
from modelbatch.execution.circuit_breaker import CircuitBreaker
from modelbatch.execution.completion import CompletionDetector, write_completion_signal
from modelbatch.execution.monitor import BatchMonitor
from modelbatch.execution.orchestrator import BatchComponents, ComponentBuilder
from modelbatch.execution.probe import ResourceSnapshot
from modelbatch.execution.reprocess import ReprocessSelector
from modelbatch.execution.retry import RetryCoordinator
from modelbatch.execution.timeout import TimeoutEstimator
from modelbatch.host import (
    DirectoryScanner,
    DocumentHandle,
    OpenResult,
    Reporter,
    TransientArtifactCleaner,
)
from modelbatch.state import MetricsAggregator, StateTracker

# Host-side script: writes a PASS signal the way a real export script would
SIGNAL_SCRIPT = textwrap.dedent(
    """
    import json, os, pathlib
    directory = pathlib.Path(os.environ["MODELBATCH_COMPLETION_DIR"])
    name = "{}_{}_PASS.json".format(
        os.environ["MODELBATCH_FILE_NAME"], os.environ["MODELBATCH_PROJECT"]
    )
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(json.dumps({"success": True, "details": "exported"}))
    """
)

# Same policy as production but without the waits
ZERO_DELAY_TABLE: dict[ErrorCategory, RecoveryAction] = {
    category: action._replace(retry_delay_seconds=0.0)
    for category, action in DEFAULT_RECOVERY_TABLE.items()
}


class FakeHost:
    """DocumentHost that writes completion signals itself.

    ``behaviors`` maps a file name to one of:
      "pass" / "fail": write that signal ``delay`` seconds after dispatch
      "never": dispatch without ever signalling (forces a timeout)
      "open_fail": refuse to open the file
      "raise": raise PermissionError from run_script
    Files not listed default to "pass". A list value gives one behavior per
    dispatch, for files that are retried.
    """

    def __init__(
        self,
        completion_dir: Path,
        project_name: str,
        behaviors: dict[str, Any] | None = None,
        delay: float = 0.01,
        on_dispatch: Callable[[str], None] | None = None,
    ) -> None:
        self.completion_dir = completion_dir
        self.project_name = project_name
        self.behaviors = dict(behaviors or {})
        self.delay = delay
        self.on_dispatch = on_dispatch
        self.opened: list[str] = []
        self.dispatched: list[str] = []
        self.closed: list[str] = []

    def _behavior(self, name: str) -> str:
        behavior = self.behaviors.get(name, "pass")
        if isinstance(behavior, list):
            attempt = self.dispatched.count(name) - 1
            return behavior[min(attempt, len(behavior) - 1)]
        return behavior

    async def open(self, file_path: Path, directories: DirectoryConfig) -> OpenResult:
        self.opened.append(file_path.name)
        if self.behaviors.get(file_path.name) == "open_fail":
            return OpenResult(False, None, f"Host could not open {file_path.name}")
        return OpenResult(True, DocumentHandle(file_path), f"Opened {file_path.name}")

    async def run_script(self, handle: DocumentHandle, script_path: Path) -> None:
        name = handle.file_name
        self.dispatched.append(name)
        if self.on_dispatch is not None:
            self.on_dispatch(name)
        behavior = self._behavior(name)
        if behavior == "raise":
            raise PermissionError(f"{name} is locked by another user")
        if behavior in ("pass", "fail"):
            asyncio.get_running_loop().call_later(
                self.delay,
                write_completion_signal,
                self.completion_dir,
                name,
                self.project_name,
                behavior == "pass",
                f"{script_path.name} {behavior} on {name}",
            )

    async def close(self, handle: DocumentHandle, file_name: str) -> bool:
        self.closed.append(file_name)
        return True


class FakeProbe:
    """ResourceProbe returning ``hot`` snapshots for the first ``hot_checks`` calls."""

    def __init__(self, hot_checks: int = 0) -> None:
        self.hot_checks = hot_checks
        self.calls = 0

    def snapshot(self) -> ResourceSnapshot:
        self.calls += 1
        if self.calls <= self.hot_checks:
            return ResourceSnapshot(cpu_percent=99.0, memory_percent=50.0)
        return ResourceSnapshot(cpu_percent=10.0, memory_percent=40.0)


class StaticScanner:
    """FileScanner returning a fixed list of names."""

    def __init__(self, names: Sequence[str]) -> None:
        self.names = list(names)

    def scan(self, path: Path, name_filter: str | None = None) -> list[str]:
        return list(self.names)


class RecordingReporter:
    """Reporter that keeps everything it is told."""

    def __init__(self, on_progress: Callable[[int, str], None] | None = None) -> None:
        self.progress_calls: list[tuple[int, int, str, float | None]] = []
        self.messages: list[str] = []
        self.errors: list[str] = []
        self.on_progress = on_progress

    def progress(
        self,
        current: int,
        total: int,
        file_name: str,
        estimated_remaining_seconds: float | None,
    ) -> None:
        self.progress_calls.append((current, total, file_name, estimated_remaining_seconds))
        if self.on_progress is not None:
            self.on_progress(current, file_name)

    def message(self, text: str) -> None:
        self.messages.append(text)

    def error(self, text: str) -> None:
        self.errors.append(text)


class FakeConfigSource:
    """ConfigSource handing out a prepared config."""

    def __init__(self, config: BatchConfig | None, problems: Sequence[str] = ()) -> None:
        self.config = config
        self.problems = list(problems)

    def select(self) -> Path | None:
        return None if self.config is None else Path("batch.yaml")

    def load(self, path: Path) -> BatchConfig:
        assert self.config is not None
        return self.config

    def validate(self, config: BatchConfig) -> list[str]:
        return list(self.problems)


def make_models(config: BatchConfig, names: Sequence[str]) -> list[Path]:
    paths = []
    for name in names:
        path = config.directories.input_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"3D model placeholder")
        paths.append(path)
    return paths


def make_builder(
    host_factory: Callable[[BatchConfig], Any],
    *,
    probe: FakeProbe | None = None,
    scanner: Any = None,
    collected: list[BatchComponents] | None = None,
) -> ComponentBuilder:
    """ComponentBuilder wiring fakes around the real engine components."""

    def build(
        config: BatchConfig,
        token: CancellationToken,
        reporter: Reporter,
        run_id: str,
    ) -> BatchComponents:
        dirs = config.directories
        resource_probe = probe or FakeProbe()
        breaker = (
            CircuitBreaker.from_config(config.circuit_breaker)
            if config.circuit_breaker.enabled
            else None
        )
        estimator = TimeoutEstimator.from_config(config.timeout)
        classifier = ErrorClassifier(ZERO_DELAY_TABLE)
        components = BatchComponents(
            host=host_factory(config),
            scanner=scanner
            or DirectoryScanner(config.script.file_extension, config.script.recursive),
            probe=resource_probe,
            cleanup=TransientArtifactCleaner(
                dirs.output_dir, config.project_name, config.monitor.cancel_file_name
            ),
            estimator=estimator,
            detector=CompletionDetector(
                dirs.completion_dir,
                config.project_name,
                estimator,
                poll_interval=config.timeout.poll_interval_seconds,
                key_by=config.timeout.key_by,
            ),
            classifier=classifier,
            retry=RetryCoordinator.from_config(
                config.retry, classifier, on_status=reporter.message
            ),
            selector=ReprocessSelector(),
            tracker=StateTracker(
                dirs.resolved_checkpoint_dir(),
                run_id=run_id,
                max_checkpoints=config.checkpoint.max_checkpoints,
            ),
            metrics=MetricsAggregator(),
            monitor=BatchMonitor(
                token,
                resource_probe,
                breaker,
                interval_seconds=config.monitor.interval_seconds,
                cancel_file=dirs.output_dir / config.monitor.cancel_file_name,
            ),
            breaker=breaker,
        )
        if collected is not None:
            collected.append(components)
        return components

    return build
