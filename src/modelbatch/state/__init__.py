"""Run state: per-file lifecycle tracking, checkpoints and metrics."""

from modelbatch.state.metrics import BatchSummary, FileSummary, MetricsAggregator
from modelbatch.state.tracker import StateTracker

__all__ = ["BatchSummary", "FileSummary", "MetricsAggregator", "StateTracker"]
