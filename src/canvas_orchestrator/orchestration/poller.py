"""
canvas-orchestrator — asynchronous job poller

File: src/canvas_orchestrator/orchestration/poller.py
Last updated: 2026-10-19

Purpose
- Drive submit/poll/cancel providers to a terminal state on behalf of the orchestrator.

What should be included in this file
- Poll interval schedule with exponential backoff capped at a maximum interval.
- Hard wall-clock timeout that forces a stalled job to ``failed``.
- Bounded retries of the status request itself on transient failures.
- Best-effort provider cancellation with local ``canceled`` regardless of acknowledgement.

Functional requirements
- Progress callbacks fire only on change, in non-decreasing percent order, and never
  after a terminal callback.

Non-functional requirements
- Clock and sleep are injectable so tests never wait on real time.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from canvas_orchestrator.domain.events import EventType
from canvas_orchestrator.domain.models import (
    FailureClass,
    JobHandle,
    JobProgress,
    JobSnapshot,
    JobStatus,
)
from canvas_orchestrator.providers.base import (
    BackoffConfig,
    PollFailedError,
    PollTimeoutError,
    ProviderError,
    SubmissionRejectedError,
    classify_exception,
    compute_backoff_delay,
    error_for,
    run_with_retries,
)
from canvas_orchestrator.utils.concurrency import (
    CancellationToken,
    await_with_cancellation,
    run_with_timeout,
    sleep_with_cancellation,
)

if TYPE_CHECKING:
    from canvas_orchestrator.domain.models import Artifact, ArtifactRequest, ProviderModel
    from canvas_orchestrator.observability.events import EventBus
    from canvas_orchestrator.providers.base import AsyncJobProvider

ProgressCallback = Callable[[JobProgress], object]
ClockFn = Callable[[], float]
SleepFn = Callable[[float], Awaitable[None]]

_REJECTED_AT_SUBMIT = frozenset({FailureClass.SUBMISSION_REJECTED, FailureClass.INVALID_REQUEST})
# A status request that times out says nothing about the job itself.
_TRANSIENT_STATUS_FAILURES = frozenset({FailureClass.TIMEOUT, FailureClass.TRANSIENT_NETWORK})


@dataclass(frozen=True, slots=True)
class PollPolicy:
    """Interval, timeout and retry knobs for one poller instance."""

    initial_interval_seconds: float = 1.0
    max_interval_seconds: float = 10.0
    backoff_multiplier: float = 2.0
    timeout_seconds: float = 300.0
    poll_retries: int = 3
    poll_retry_delay_seconds: float = 0.5
    cancel_ack_timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.initial_interval_seconds <= 0:
            raise ValueError("initial_interval_seconds must be > 0")
        if self.max_interval_seconds < self.initial_interval_seconds:
            raise ValueError("max_interval_seconds must be >= initial_interval_seconds")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.poll_retries < 0:
            raise ValueError("poll_retries must be >= 0")
        if self.poll_retry_delay_seconds < 0:
            raise ValueError("poll_retry_delay_seconds must be >= 0")
        if self.cancel_ack_timeout_seconds <= 0:
            raise ValueError("cancel_ack_timeout_seconds must be > 0")

    def interval(self, poll_number: int) -> float:
        """Delay before poll ``poll_number`` (1-based)."""

        return compute_backoff_delay(
            retry_number=poll_number,
            config=BackoffConfig(
                initial_delay_seconds=self.initial_interval_seconds,
                multiplier=self.backoff_multiplier,
                max_delay_seconds=self.max_interval_seconds,
            ),
        )

    def poll_retry_backoff(self) -> BackoffConfig:
        return BackoffConfig(
            max_retries=self.poll_retries,
            initial_delay_seconds=self.poll_retry_delay_seconds,
            multiplier=2.0,
            max_delay_seconds=max(self.poll_retry_delay_seconds, self.max_interval_seconds),
        )


@dataclass(slots=True)
class _Watcher:
    callback: ProgressCallback | None
    last_status: JobStatus | None = None
    last_percent: int = -1


class JobPoller:
    """Generic async-completion watcher for submit/poll-style providers."""

    def __init__(
        self,
        policy: PollPolicy | None = None,
        *,
        clock: ClockFn = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
    ) -> None:
        self._policy = policy if policy is not None else PollPolicy()
        self._clock = clock
        self._sleep = sleep
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._watchers: dict[int, _Watcher] = {}

    @property
    def policy(self) -> PollPolicy:
        return self._policy

    async def submit(
        self,
        provider: AsyncJobProvider,
        workload: ArtifactRequest,
        *,
        model: ProviderModel,
        on_progress: ProgressCallback | None = None,
    ) -> JobHandle:
        """Submit ``workload`` and return a handle in ``submitted`` state.

        Raises ``SubmissionRejectedError`` when the provider refuses the workload
        outright; other submit failures propagate as classified ``ProviderError``.
        """

        provider_id = model.provider_id
        try:
            job_id = await provider.submit(model, workload)
        except Exception as exc:  # noqa: BLE001
            mapped = classify_exception(exc, provider=provider_id)
            if mapped.failure in _REJECTED_AT_SUBMIT:
                rejected = SubmissionRejectedError(
                    mapped.detail, provider=provider_id, http_status=mapped.http_status
                )
                self._logger.info(
                    "job_submission_rejected", provider_id=provider_id, detail=mapped.detail
                )
                raise rejected from exc
            if mapped is exc:
                raise
            raise mapped from exc

        if not isinstance(job_id, str) or not job_id.strip():
            raise SubmissionRejectedError(
                "provider returned an empty job id", provider=provider_id
            )

        handle = JobHandle(
            job_id=job_id.strip(),
            provider_id=provider_id,
            provider=provider,
            submitted_at=self._clock(),
        )
        self._watchers[id(handle)] = _Watcher(callback=on_progress)
        self._logger.info("job_submitted", job_id=handle.job_id, provider_id=provider_id)
        self._emit(EventType.JOB_SUBMITTED, handle)
        self._notify(handle)
        return handle

    async def poll(self, handle: JobHandle) -> JobStatus:
        """Fetch the job status once, retrying transient status-request failures."""

        if handle.is_terminal:
            return handle.status

        def log_retry(retry_number: int, error: ProviderError, delay: float) -> None:
            self._logger.info(
                "job_poll_retry",
                job_id=handle.job_id,
                provider_id=handle.provider_id,
                retry=retry_number,
                delay_seconds=delay,
                detail=error.detail,
            )

        try:
            snapshot = await run_with_retries(
                lambda: handle.provider.poll(handle.job_id),
                provider=handle.provider_id,
                backoff=self._policy.poll_retry_backoff(),
                sleep=self._sleep,
                on_retry=log_retry,
                retry_on=_is_transient_status_failure,
            )
        except ProviderError as exc:
            if _is_transient_status_failure(exc):
                raise PollFailedError(
                    f"status request for job {handle.job_id} failed after "
                    f"{self._policy.poll_retries} retries: {exc.detail}",
                    provider=handle.provider_id,
                    http_status=exc.http_status,
                ) from exc
            raise

        if handle.is_terminal:
            # Cancelled locally while the status request was in flight.
            return handle.status
        self._apply_snapshot(handle, snapshot)
        return handle.status

    async def wait(
        self,
        handle: JobHandle,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Artifact:
        """Poll ``handle`` until terminal and return its artifact.

        Raises ``PollTimeoutError`` past the wall-clock deadline, ``PollFailedError``
        when status requests keep failing, the classified job error on ``failed``,
        and ``asyncio.CancelledError`` when cancelled (after cancelling the job).
        """

        poll_number = 0
        try:
            while not handle.is_terminal:
                remaining = self._remaining(handle)
                if remaining <= 0:
                    await self._expire(handle)
                poll_number += 1
                delay = min(self._policy.interval(poll_number), remaining)
                await sleep_with_cancellation(delay, sleep=self._sleep, cancel_token=cancel_token)
                if handle.is_terminal:
                    break
                remaining = self._remaining(handle)
                if remaining <= 0:
                    await self._expire(handle)
                try:
                    await run_with_timeout(self.poll(handle), remaining, cancel_token)
                except TimeoutError:
                    await self._expire(handle)
                except ProviderError as exc:
                    await self._abandon(handle, exc)
                    raise
        except asyncio.CancelledError:
            if not handle.is_terminal:
                await asyncio.shield(self.cancel(handle))
            raise
        return self._terminal_result(handle)

    async def cancel(self, handle: JobHandle) -> bool:
        """Mark ``handle`` canceled locally, then ask the provider to stop.

        Returns whether the provider acknowledged within ``cancel_ack_timeout_seconds``.
        Handles that are already terminal are left untouched and return ``False``.
        """

        if handle.is_terminal:
            return False

        handle.status = JobStatus.CANCELED
        self._notify(handle)
        self._emit(EventType.JOB_CANCELLED, handle)
        acknowledged = await self._request_provider_cancel(handle)
        self._logger.info(
            "job_cancelled",
            job_id=handle.job_id,
            provider_id=handle.provider_id,
            acknowledged=acknowledged,
        )
        return acknowledged

    async def run(
        self,
        provider: AsyncJobProvider,
        workload: ArtifactRequest,
        *,
        model: ProviderModel,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Artifact:
        """Submit and wait in one call."""

        handle = await await_with_cancellation(
            self.submit(provider, workload, model=model, on_progress=on_progress),
            cancel_token=cancel_token,
        )
        return await self.wait(handle, cancel_token=cancel_token)

    def _remaining(self, handle: JobHandle) -> float:
        return self._policy.timeout_seconds - (self._clock() - handle.submitted_at)

    def _apply_snapshot(self, handle: JobHandle, snapshot: JobSnapshot) -> None:
        handle.polls += 1
        status = snapshot.status
        if status is JobStatus.SUCCEEDED:
            handle.result = snapshot.artifact
        elif status is JobStatus.FAILED:
            handle.error = error_for(
                snapshot.failure or FailureClass.PROVIDER_ERROR,
                snapshot.detail or "job failed",
                provider=handle.provider_id,
            )
        elif status is JobStatus.CANCELED:
            handle.error = error_for(
                FailureClass.PROVIDER_ERROR,
                snapshot.detail or "job canceled by provider",
                provider=handle.provider_id,
            )

        if status is JobStatus.SUCCEEDED:
            handle.progress = 100
        elif snapshot.progress is not None:
            handle.progress = max(handle.progress, snapshot.progress)
        handle.status = status
        self._notify(handle)

    async def _expire(self, handle: JobHandle) -> None:
        error = PollTimeoutError(
            f"job {handle.job_id} not terminal after {self._policy.timeout_seconds}s",
            provider=handle.provider_id,
        )
        self._logger.info(
            "job_timed_out",
            job_id=handle.job_id,
            provider_id=handle.provider_id,
            timeout_seconds=self._policy.timeout_seconds,
            polls=handle.polls,
        )
        self._emit(EventType.JOB_TIMED_OUT, handle)
        await self._abandon(handle, error)
        raise error

    async def _abandon(self, handle: JobHandle, error: ProviderError) -> None:
        if handle.is_terminal:
            return
        handle.status = JobStatus.FAILED
        handle.error = error
        self._notify(handle)
        await self._request_provider_cancel(handle)

    async def _request_provider_cancel(self, handle: JobHandle) -> bool:
        try:
            await run_with_timeout(
                handle.provider.cancel(handle.job_id),
                self._policy.cancel_ack_timeout_seconds,
            )
        except TimeoutError:
            self._logger.warning(
                "job_cancel_unacknowledged",
                job_id=handle.job_id,
                provider_id=handle.provider_id,
                timeout_seconds=self._policy.cancel_ack_timeout_seconds,
            )
            return False
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "job_cancel_failed",
                job_id=handle.job_id,
                provider_id=handle.provider_id,
                error_type=type(exc).__name__,
                detail=str(exc),
            )
            return False
        return True

    def _terminal_result(self, handle: JobHandle) -> Artifact:
        if handle.status is JobStatus.SUCCEEDED and handle.result is not None:
            return handle.result
        if handle.error is not None:
            raise handle.error
        raise asyncio.CancelledError(f"job {handle.job_id} canceled")

    def _notify(self, handle: JobHandle) -> None:
        watcher = self._watchers.get(id(handle))
        if watcher is None:
            return
        if watcher.last_status is handle.status and watcher.last_percent == handle.progress:
            return

        watcher.last_status = handle.status
        watcher.last_percent = handle.progress
        if handle.is_terminal:
            del self._watchers[id(handle)]

        if handle.status is not JobStatus.SUBMITTED:
            self._emit(EventType.JOB_PROGRESSED, handle)
        if watcher.callback is None:
            return
        update = JobProgress(
            job_id=handle.job_id,
            provider_id=handle.provider_id,
            status=handle.status,
            percent=handle.progress,
        )
        try:
            watcher.callback(update)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "job_progress_callback_failed",
                job_id=handle.job_id,
                error_type=type(exc).__name__,
                detail=str(exc),
            )

    def _emit(self, event_type: EventType, handle: JobHandle) -> None:
        if self._event_bus is None:
            return
        self._event_bus.emit(
            event_type,
            {
                "job_id": handle.job_id,
                "provider_id": handle.provider_id,
                "status": handle.status.value,
                "progress": handle.progress,
                "polls": handle.polls,
            },
            correlation_id=handle.job_id,
        )


def _is_transient_status_failure(error: ProviderError) -> bool:
    return error.retryable or error.failure in _TRANSIENT_STATUS_FAILURES


__all__ = ["JobPoller", "PollPolicy", "ProgressCallback"]
