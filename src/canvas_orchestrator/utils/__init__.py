"""Async concurrency helpers."""

from canvas_orchestrator.utils.concurrency import (
    CancellationToken,
    WorkerPool,
    await_with_cancellation,
    run_with_timeout,
    sleep_with_cancellation,
)

__all__ = [
    "CancellationToken",
    "WorkerPool",
    "await_with_cancellation",
    "run_with_timeout",
    "sleep_with_cancellation",
]
