"""Shared fakes: deterministic clock, scripted providers, and a recording canvas."""

from __future__ import annotations

import asyncio
import copy
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import pytest

from canvas_orchestrator.domain.models import (
    Artifact,
    ArtifactRequest,
    FailureClass,
    JobSnapshot,
    JobStatus,
    ProviderModel,
)
from canvas_orchestrator.orchestration.fallback import FallbackOrchestrator
from canvas_orchestrator.orchestration.poller import JobPoller, PollPolicy
from canvas_orchestrator.providers.base import BackoffConfig, EnvironmentCredentials
from canvas_orchestrator.providers.registry import ProviderRegistry

ALL_KEYS: Mapping[str, str] = {
    "ALPHA_KEY": "alpha-test",
    "BETA_KEY": "beta-test",
    "GAMMA_KEY": "gamma-test",
}

TEST_CATALOG: Mapping[str, object] = {
    "version": "test-1",
    "providers": [
        {
            "provider_id": "alpha/pro",
            "vendor": "alpha",
            "model": "alpha-pro-image",
            "display_name": "Alpha Pro",
            "capabilities": ["image-generation", "image-edit"],
            "quality_score": 95,
            "cost_per_call_usd": 0.2,
            "max_output_size": 4096,
            "is_async": False,
            "credential_env": "ALPHA_KEY",
        },
        {
            "provider_id": "beta/async",
            "vendor": "beta",
            "model": "beta-jobs",
            "capabilities": ["image-generation", "upscale"],
            "quality_score": 85,
            "cost_per_call_usd": 0.01,
            "max_output_size": 2048,
            "is_async": True,
            "credential_env": "BETA_KEY",
        },
        {
            "provider_id": "gamma/fast",
            "vendor": "gamma",
            "model": "gamma-fast",
            "capabilities": ["image-generation", "upscale"],
            "quality_score": 70,
            "max_output_size": 1024,
            "is_async": False,
            "credential_env": "GAMMA_KEY",
        },
        {
            "provider_id": "delta/face",
            "vendor": "delta",
            "model": "delta-face",
            "capabilities": ["face-enhancement"],
            "is_async": False,
        },
    ],
    "tiers": {
        "image-generation": ["alpha/pro", "beta/async", "gamma/fast"],
        "image-edit": ["alpha/pro"],
        "upscale": ["beta/async", "gamma/fast"],
        "face-enhancement": ["delta/face"],
    },
}


def artifact_for(model: ProviderModel, request: ArtifactRequest | None = None) -> Artifact:
    capability = sorted(model.capabilities)[0]
    return Artifact(
        capability=capability,
        provider_id=model.provider_id,
        model=model.model,
        uri=f"https://cdn.example.test/{model.provider_id}.png",
        output_size=None if request is None else request.output_size,
    )


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class ScriptedSyncProvider:
    """Sync provider that replays scripted outcomes; an empty script means success."""

    def __init__(self, *outcomes: BaseException | Artifact | None, hang: bool = False) -> None:
        self.outcomes: deque[BaseException | Artifact | None] = deque(outcomes)
        self.hang = hang
        self.calls: list[tuple[str, ArtifactRequest]] = []
        self.started = asyncio.Event()

    async def invoke(self, model: ProviderModel, request: ArtifactRequest) -> Artifact:
        self.calls.append((model.provider_id, request))
        self.started.set()
        if self.hang:
            await asyncio.Event().wait()
        outcome = self.outcomes.popleft() if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return artifact_for(model, request)
        return outcome


class ScriptedJobProvider:
    """Submit/poll/cancel provider; every job walks through the same ``steps``.

    A step is ``(status, progress)`` or ``(JobStatus.FAILED, FailureClass)``; the
    last step repeats. Succeeded steps carry an artifact for the submitted model.
    """

    def __init__(
        self,
        steps: Iterable[tuple[JobStatus, int | FailureClass | None]] = (),
        *,
        submit_error: BaseException | None = None,
        poll_failures: int = 0,
        poll_error: BaseException | None = None,
        cancel_hangs: bool = False,
        job_id: str | None = None,
    ) -> None:
        self.steps = list(steps) or [(JobStatus.PROCESSING, None)]
        self.submit_error = submit_error
        self.poll_failures = poll_failures
        self.poll_error = poll_error
        self.cancel_hangs = cancel_hangs
        self.job_id = job_id
        self.submitted: list[ArtifactRequest] = []
        self.cancelled: list[str] = []
        self.poll_calls = 0
        self._jobs: dict[str, tuple[ProviderModel, ArtifactRequest]] = {}
        self._cursor: dict[str, int] = {}

    async def submit(self, model: ProviderModel, request: ArtifactRequest) -> str:
        self.submitted.append(request)
        if self.submit_error is not None:
            raise self.submit_error
        job_id = self.job_id if self.job_id is not None else f"job-{len(self.submitted)}"
        self._jobs[job_id] = (model, request)
        self._cursor[job_id] = 0
        return job_id

    async def poll(self, job_id: str) -> JobSnapshot:
        self.poll_calls += 1
        if self.poll_failures > 0:
            self.poll_failures -= 1
            if self.poll_error is not None:
                raise self.poll_error
            raise ConnectionError("connection reset by peer")
        index = min(self._cursor[job_id], len(self.steps) - 1)
        self._cursor[job_id] += 1
        status, detail = self.steps[index]
        if status is JobStatus.SUCCEEDED:
            model, request = self._jobs[job_id]
            return JobSnapshot(status, progress=100, artifact=artifact_for(model, request))
        if status is JobStatus.FAILED:
            failure = detail if isinstance(detail, FailureClass) else None
            return JobSnapshot(status, failure=failure, detail="job failed upstream")
        progress = detail if isinstance(detail, int) else None
        return JobSnapshot(status, progress=progress)

    async def cancel(self, job_id: str) -> None:
        self.cancelled.append(job_id)
        if self.cancel_hangs:
            await asyncio.Event().wait()


class RecordingCanvas:
    """``CanvasStore`` double that records every mutation."""

    def __init__(self) -> None:
        self.applied: list[Artifact] = []
        self.discards = 0

    def apply_result(self, artifact: Artifact) -> None:
        self.applied.append(artifact)

    def discard(self) -> None:
        self.discards += 1
        if self.applied:
            self.applied.pop()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog_payload() -> dict[str, Any]:
    """Mutable deep copy of the test catalog for malformed-catalog cases."""

    return copy.deepcopy(dict(TEST_CATALOG))


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry.from_mapping(TEST_CATALOG)


@pytest.fixture
def canvas() -> RecordingCanvas:
    return RecordingCanvas()


@pytest.fixture
def fakes() -> Any:
    """Expose the fake classes to test modules without importing ``conftest``."""

    class _Fakes:
        Clock = FakeClock
        SyncProvider = ScriptedSyncProvider
        JobProvider = ScriptedJobProvider
        Canvas = RecordingCanvas
        keys = ALL_KEYS
        artifact_for = staticmethod(artifact_for)

    return _Fakes


@pytest.fixture
def make_orchestrator(
    registry: ProviderRegistry, clock: FakeClock
) -> Callable[..., FallbackOrchestrator]:
    def build(
        adapters: Mapping[str, object],
        *,
        environ: Mapping[str, str] | None = None,
        poll_policy: PollPolicy | None = None,
        retry_backoff: BackoffConfig | None = None,
        probe_interval_runs: int = 10,
        batch_concurrency: int = 4,
        event_bus: Any | None = None,
        target_registry: ProviderRegistry | None = None,
    ) -> FallbackOrchestrator:
        poller = JobPoller(
            poll_policy
            or PollPolicy(
                initial_interval_seconds=1.0, max_interval_seconds=2.0, timeout_seconds=5.0
            ),
            clock=clock,
            sleep=clock.sleep,
            event_bus=event_bus,
        )
        return FallbackOrchestrator(
            target_registry or registry,
            adapters,  # type: ignore[arg-type]
            poller=poller,
            credentials=EnvironmentCredentials(ALL_KEYS if environ is None else environ),
            retry_backoff=retry_backoff
            or BackoffConfig(max_retries=1, initial_delay_seconds=0.1, max_delay_seconds=0.1),
            probe_interval_runs=probe_interval_runs,
            batch_concurrency=batch_concurrency,
            clock=clock,
            sleep=clock.sleep,
            event_bus=event_bus,
        )

    return build

