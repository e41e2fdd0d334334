"""Execution engine: completion detection, retry, circuit breaker and orchestration."""
