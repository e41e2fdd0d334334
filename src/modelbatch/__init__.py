"""modelbatch: unattended batch orchestration for a long-lived host application.

Runs a script inside an external host once per model file, detects completion
through signal files, and keeps the run alive for hours with adaptive
timeouts, retry/backoff, a resource circuit breaker and checkpointing.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
