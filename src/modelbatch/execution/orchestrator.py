"""Batch orchestrator: the top-level state machine of a run.

    IDLE -> SELECTING_CONFIG -> VALIDATING -> SCANNING -> FILTERING
         -> PROCESSING -> AGGREGATING -> COMPLETED | CANCELLED | FAILED

Files are processed one at a time. For each file: check cancellation, wait
for circuit breaker capacity, open it in the host, dispatch the script and
await its completion signal under the retry coordinator, close it, then
record the terminal state, metrics and a checkpoint. A single file's failure
never ends the run. Transient artifacts are cleaned up however processing
exits, and the finalized run is written as the reference run log.

Every component is handed in explicitly. ``ComponentBuilder`` turns the
loaded configuration into the components for one run; tests swap in fakes.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from modelbatch.core.config import BatchConfig
from modelbatch.core.errors import ConfigError, ErrorCategory, ErrorClassifier
from modelbatch.core.logging import ExecutionContext, get_logger, with_context
from modelbatch.core.models import BatchRun, FileOutcome, FileStatus
from modelbatch.execution.cancellation import CancellationToken
from modelbatch.execution.circuit_breaker import CircuitBreaker
from modelbatch.execution.completion import CompletionDetector
from modelbatch.execution.monitor import BatchMonitor
from modelbatch.execution.probe import PsutilProbe
from modelbatch.execution.reprocess import ReprocessSelector
from modelbatch.execution.retry import OperationResult, RetryCoordinator
from modelbatch.execution.timeout import TimeoutEstimator
from modelbatch.host import (
    Cleanup,
    ConfigSource,
    DirectoryScanner,
    DocumentHandle,
    DocumentHost,
    FileScanner,
    Reporter,
    ResourceProbe,
    SubprocessHost,
    TransientArtifactCleaner,
)
from modelbatch.state import MetricsAggregator, StateTracker
from modelbatch.utils import utc_now

_logger = get_logger("orchestrator")

NO_FILES_DETAILS = "No files found for processing."


class OrchestratorState(str, Enum):
    IDLE = "idle"
    SELECTING_CONFIG = "selecting_config"
    VALIDATING = "validating"
    SCANNING = "scanning"
    FILTERING = "filtering"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class BatchComponents:
    """Everything one run needs, constructed up front."""

    host: DocumentHost
    scanner: FileScanner
    probe: ResourceProbe
    cleanup: Cleanup
    estimator: TimeoutEstimator
    detector: CompletionDetector
    classifier: ErrorClassifier
    retry: RetryCoordinator
    selector: ReprocessSelector
    tracker: StateTracker
    metrics: MetricsAggregator
    monitor: BatchMonitor
    breaker: CircuitBreaker | None = None


ComponentBuilder = Callable[
    [BatchConfig, CancellationToken, Reporter, str], BatchComponents
]


def build_components(
    config: BatchConfig,
    token: CancellationToken,
    reporter: Reporter,
    run_id: str,
) -> BatchComponents:
    """Default wiring: subprocess host, directory scanner, psutil probe."""
    dirs = config.directories
    probe = PsutilProbe()
    breaker = (
        CircuitBreaker.from_config(config.circuit_breaker)
        if config.circuit_breaker.enabled
        else None
    )
    estimator = TimeoutEstimator.from_config(config.timeout)
    classifier = ErrorClassifier()
    return BatchComponents(
        host=SubprocessHost(config.host, config.project_name, dirs.completion_dir),
        scanner=DirectoryScanner(config.script.file_extension, config.script.recursive),
        probe=probe,
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
            dirs.resolved_checkpoint_dir() if config.checkpoint.enabled else None,
            run_id=run_id,
            interval_seconds=config.checkpoint.interval_seconds,
            max_checkpoints=config.checkpoint.max_checkpoints,
        ),
        metrics=MetricsAggregator(),
        monitor=BatchMonitor(
            token,
            probe,
            breaker,
            interval_seconds=config.monitor.interval_seconds,
            cancel_file=dirs.output_dir / config.monitor.cancel_file_name,
            max_snapshots=config.monitor.max_snapshots,
        ),
        breaker=breaker,
    )


def run_log_path(config: BatchConfig, started_at_label: str) -> Path:
    return config.directories.log_dir / f"{config.project_name}_{started_at_label}.json"


class BatchOrchestrator:
    """Runs one batch from configuration selection to the final run log.

    Args:
        config_source: Selects, loads and validates the configuration.
        reporter: Receives progress, status and error lines.
        builder: Builds the run's components from the loaded configuration.
        token: Cancellation token shared with the caller (signal handlers).
        run_id: Identifier for this run; generated when omitted.
    """

    def __init__(
        self,
        config_source: ConfigSource,
        reporter: Reporter,
        builder: ComponentBuilder = build_components,
        token: CancellationToken | None = None,
        run_id: str | None = None,
    ) -> None:
        self._config_source = config_source
        self._reporter = reporter
        self._builder = builder
        self.token = token or CancellationToken()
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._state = OrchestratorState.IDLE
        self._history: list[OrchestratorState] = [OrchestratorState.IDLE]
        self.config: BatchConfig | None = None
        self.components: BatchComponents | None = None
        self.run_log: Path | None = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def state_history(self) -> list[OrchestratorState]:
        return list(self._history)

    def request_cancel(self, reason: str = "cancellation requested") -> None:
        self.token.cancel(reason)

    def _set_state(self, state: OrchestratorState) -> None:
        _logger.debug(
            "orchestrator.state_changed",
            from_state=self._state.value,
            to_state=state.value,
        )
        self._state = state
        self._history.append(state)

    async def run(self) -> BatchRun:
        """Execute the whole run and return the finalized ``BatchRun``."""
        started = utc_now()

        self._set_state(OrchestratorState.SELECTING_CONFIG)
        path = self._config_source.select()
        if path is None:
            return self._abort("No configuration selected", started)
        try:
            config = self._config_source.load(path)
        except ConfigError as e:
            return self._abort(f"Invalid configuration: {e}", started)

        self._set_state(OrchestratorState.VALIDATING)
        problems = self._config_source.validate(config)
        if problems:
            return self._abort("; ".join(problems), started, config)

        self.config = config
        components = self._builder(config, self.token, self._reporter, self.run_id)
        self.components = components
        ctx = ExecutionContext(project=config.project_name, run_id=self.run_id)
        with with_context(ctx):
            return await self._run_with_config(config, components, ctx, started)

    async def _run_with_config(
        self,
        config: BatchConfig,
        c: BatchComponents,
        ctx: ExecutionContext,
        started: datetime,
    ) -> BatchRun:
        run = BatchRun(
            project_name=config.project_name,
            run_id=self.run_id,
            start_time=started,
            reprocess_mode=config.reprocess.mode.upper(),
        )

        self._set_state(OrchestratorState.SCANNING)
        try:
            candidates = c.scanner.scan(
                config.directories.input_dir, config.script.name_filter
            )
        except OSError as e:
            return self._abort(f"Directory scan failed: {e}", started, config, run)

        self._set_state(OrchestratorState.FILTERING)
        if not candidates:
            self._reporter.message(NO_FILES_DETAILS)
            return self._finish(config, run, cancelled=False, details=NO_FILES_DETAILS)
        selection = c.selector.select_files(
            config.reprocess.mode, config.reprocess.reference_log, candidates
        )
        if not selection.ok:
            return self._abort(
                f"Reprocess selection failed: {selection.error}", started, config, run
            )
        files = selection.files
        if not files:
            details = f"No files selected for processing (mode {run.reprocess_mode})."
            self._reporter.message(details)
            return self._finish(config, run, cancelled=False, details=details)

        self._set_state(OrchestratorState.PROCESSING)
        _logger.info(
            "batch.started",
            candidates=len(candidates),
            selected=len(files),
            reprocess_mode=run.reprocess_mode,
        )
        self._reporter.message(f"Processing {len(files)} of {len(candidates)} files")
        c.tracker.initialize_batch(len(files), files)
        cancelled = False
        await c.monitor.start()
        try:
            for index, name in enumerate(files, start=1):
                if self.token.cancelled or c.monitor.check_cancellation():
                    cancelled = True
                    break
                if not await self._wait_for_capacity(config, c):
                    cancelled = True
                    break
                file_ctx = ctx.with_file(name)
                with with_context(file_ctx):
                    outcome = await self._process_file(config, c, name, file_ctx)
                run.add_outcome(outcome)
                c.metrics.record_file_metric(name, outcome)
                await c.tracker.maybe_checkpoint()
                self._reporter.progress(
                    index,
                    len(files),
                    name,
                    c.metrics.estimate_remaining_seconds(len(files) - index),
                )
                if outcome.status is FileStatus.CANCELLED:
                    cancelled = True
                    break
        finally:
            await c.monitor.stop()
            c.tracker.complete_batch()
            try:
                c.cleanup.cleanup()
            except OSError as e:
                _logger.error("batch.cleanup_failed", error=str(e))
            await c.tracker.checkpoint()

        self._set_state(OrchestratorState.AGGREGATING)
        summary = c.metrics.batch_summary()
        analysis = c.classifier.batch_error_analysis()
        _logger.info(
            "batch.summary",
            **summary.to_dict(),
            total_errors=analysis.total_errors,
            cancelled=cancelled,
        )
        details = (
            f"{summary.completed} passed, {summary.failed} failed "
            f"of {len(files)} selected"
        )
        if cancelled:
            details += f"; cancelled ({self.token.reason})"
        return self._finish(config, run, cancelled=cancelled, details=details)

    async def _wait_for_capacity(self, config: BatchConfig, c: BatchComponents) -> bool:
        """Block while the breaker refuses work. False if cancelled meanwhile."""
        if c.breaker is None:
            return True
        announced = False
        while True:
            decision = c.breaker.check(c.probe.snapshot())
            if decision.allowed:
                if announced:
                    self._reporter.message("System recovered; resuming processing")
                return True
            if not announced:
                self._reporter.message(decision.message or "Waiting for system resources")
                announced = True
            pause = config.circuit_breaker.pause_seconds
            remaining = c.breaker.time_until_reset()
            if remaining is not None:
                pause = min(pause, max(remaining, 0.01))
            if await self.token.sleep(pause):
                return False

    async def _process_file(
        self,
        config: BatchConfig,
        c: BatchComponents,
        name: str,
        ctx: ExecutionContext,
    ) -> FileOutcome:
        outcome = FileOutcome(file_name=name, status=FileStatus.RUNNING)
        c.tracker.update_file_state(name, FileStatus.RUNNING)
        file_path = config.directories.input_dir / name
        signal_id = Path(name).name
        script = config.script.path
        attempts = 0

        if not file_path.is_file():
            details = f"File not found: {file_path}"
            response = c.classifier.record_error(name, ErrorCategory.IO, details)
            self._reporter.error(response.summary())
            return self._complete(c, outcome, FileStatus.MISSING, details, attempts)

        handle: DocumentHandle | None = None
        status = FileStatus.FAIL
        details = ""
        try:
            opened = await c.host.open(file_path, config.directories)
            if not opened.success or opened.handle is None:
                response = c.classifier.record_error(name, ErrorCategory.IO, opened.message)
                self._reporter.error(response.summary())
                return self._complete(c, outcome, FileStatus.FAIL, opened.message, attempts)
            handle = opened_handle = opened.handle
            c.detector.discard_stale_signals(signal_id)

            async def attempt(n: int) -> OperationResult:
                with with_context(ctx.with_attempt(n)):
                    if n > 1:
                        c.detector.discard_stale_signals(signal_id)
                    await c.host.run_script(opened_handle, script)
                    done = await c.detector.await_completion(
                        signal_id, script.name, self.token
                    )
                if done.success:
                    return OperationResult(True, done.details)
                if done.cancelled:
                    return OperationResult(False, done.details, cancelled=True)
                if done.timed_out:
                    return OperationResult(False, done.details, ErrorCategory.TIMEOUT)
                return OperationResult(False, done.details)

            result = await c.retry.execute_with_retry(name, attempt, token=self.token)
            attempts = result.attempts
            details = result.details
            if result.success:
                status = FileStatus.PASS
            elif result.cancelled:
                status = FileStatus.CANCELLED
            elif result.category is ErrorCategory.TIMEOUT:
                status = FileStatus.TIMEOUT
            else:
                status = FileStatus.FAIL
            if status.is_failure:
                self._reporter.error(f"{name}: {details}")
        except Exception as e:
            response = c.classifier.handle_error(name, e)
            status = FileStatus.FAIL
            details = response.summary()
            self._reporter.error(details)
            _logger.exception("file.processing_error", category=response.category.value)
        finally:
            if handle is not None:
                try:
                    if not await c.host.close(handle, name):
                        _logger.warning("file.close_failed")
                except Exception as e:
                    _logger.error("file.close_error", error=str(e))
        return self._complete(c, outcome, status, details, attempts)

    def _complete(
        self,
        c: BatchComponents,
        outcome: FileOutcome,
        status: FileStatus,
        details: str,
        attempts: int,
    ) -> FileOutcome:
        outcome.complete(status, details, attempts)
        c.tracker.update_file_state(outcome.file_name, status, details)
        _logger.info(
            "file.completed",
            status=status.value,
            attempts=attempts,
            duration_seconds=round(outcome.duration_seconds, 3),
        )
        return outcome

    def _abort(
        self,
        reason: str,
        started: datetime,
        config: BatchConfig | None = None,
        run: BatchRun | None = None,
    ) -> BatchRun:
        _logger.error("batch.aborted", state=self._state.value, reason=reason)
        self._reporter.error(reason)
        if run is None:
            run = BatchRun(
                project_name=config.project_name if config else "unknown",
                run_id=self.run_id,
                start_time=started,
            )
        run.finalize(aborted=True, details=reason)
        if config is not None:
            self._save_run_log(config, run)
        self._set_state(OrchestratorState.FAILED)
        return run

    def _finish(
        self, config: BatchConfig, run: BatchRun, *, cancelled: bool, details: str
    ) -> BatchRun:
        run.finalize(cancelled=cancelled, details=details)
        self._save_run_log(config, run)
        self._set_state(
            OrchestratorState.CANCELLED if cancelled else OrchestratorState.COMPLETED
        )
        self._reporter.message(
            f"Batch {run.status.value.upper()}: {run.successful_files} passed, "
            f"{run.failed_files} failed, {run.total_files} processed"
        )
        return run

    def _save_run_log(self, config: BatchConfig, run: BatchRun) -> None:
        path = run_log_path(config, f"{run.start_time:%Y%m%d_%H%M%S}")
        try:
            self.run_log = run.save(path)
        except OSError as e:
            _logger.error("run_log.save_failed", path=str(path), error=str(e))
            self._reporter.error(f"Could not write run log {path}: {e}")


__all__ = [
    "BatchComponents",
    "BatchOrchestrator",
    "ComponentBuilder",
    "NO_FILES_DETAILS",
    "OrchestratorState",
    "build_components",
    "run_log_path",
]
