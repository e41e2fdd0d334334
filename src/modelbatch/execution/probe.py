"""Resource snapshots of the machine running the batch.

The host application shares the workstation with everything else, so the
circuit breaker looks at system-wide CPU and memory rather than at this
process alone.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime

import psutil

from modelbatch.core.logging import get_logger
from modelbatch.utils import utc_now

_logger = get_logger("probe")


@dataclass(frozen=True)
class ResourceSnapshot:
    """System resource usage at one instant.

    Attributes:
        cpu_percent: System-wide CPU utilisation, 0-100.
        memory_percent: System memory in use, 0-100.
        memory_used_mb: Resident memory of this process in MB.
        thread_count: Threads in this process.
        timestamp: When the snapshot was taken (UTC).
    """

    cpu_percent: float
    memory_percent: float
    memory_used_mb: float = 0.0
    thread_count: int = 0
    timestamp: datetime = field(default_factory=utc_now)


class PsutilProbe:
    """``ResourceProbe`` backed by psutil.

    ``psutil.cpu_percent(interval=None)`` measures since the previous call, so
    the first snapshot after construction primes the counter and reports the
    usage since process start.
    """

    def __init__(self) -> None:
        self._process = psutil.Process()
        psutil.cpu_percent(interval=None)

    def snapshot(self) -> ResourceSnapshot:
        cpu = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory()
        try:
            rss_mb = self._process.memory_info().rss / (1024 * 1024)
            threads = self._process.num_threads()
        except psutil.Error as e:
            _logger.debug("probe.process_info_failed", error=str(e))
            rss_mb = 0.0
            threads = threading.active_count()
        return ResourceSnapshot(
            cpu_percent=cpu,
            memory_percent=memory.percent,
            memory_used_mb=round(rss_mb, 1),
            thread_count=threads,
        )


__all__ = ["PsutilProbe", "ResourceSnapshot"]
