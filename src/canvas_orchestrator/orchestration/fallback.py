"""
canvas-orchestrator — tiered fallback orchestrator

File: src/canvas_orchestrator/orchestration/fallback.py
Last updated: 2026-10-19

Purpose
- Serve one capability request by walking its provider tier list in order and
  returning the first success, degrading request parameters where a tier requires it.

What should be included in this file
- Per-tier eligibility (credentials, quota suppression, adapters, remembered tier).
- Request downgrade to a provider's declared limits.
- Failure disposition handling: same-tier retry, fallback, terminal stop.
- Aggregated errors carrying every attempt record and a user-facing message.
- Bounded-concurrency batch runs for non-canvas work.

Functional requirements
- Attempt records are strictly ordered by tier index, one per invoked tier.
- A terminal failure stops the run; no later tier is invoked.
- Cancellation stops the active provider call and never advances to the next tier.

Non-functional requirements
- Per-session state lives on ``Session``; the orchestrator itself holds no mutable
  request state and can serve many sessions concurrently.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Final, TypeAlias

import structlog

from canvas_orchestrator.domain.events import EventType
from canvas_orchestrator.domain.ids import generate_run_id
from canvas_orchestrator.domain.models import (
    Artifact,
    ArtifactRequest,
    AttemptOutcome,
    AttemptRecord,
    Capability,
    Downgrade,
    FailureClass,
    ProviderModel,
    SkippedTier,
    SkipReason,
)
from canvas_orchestrator.observability.logging import correlation_scope
from canvas_orchestrator.orchestration.poller import JobPoller, ProgressCallback
from canvas_orchestrator.providers.base import (
    AsyncJobProvider,
    BackoffConfig,
    CredentialResolver,
    EnvironmentCredentials,
    PollFailedError,
    ProviderError,
    SyncProvider,
    classify_exception,
    compute_backoff_delay,
)
from canvas_orchestrator.utils.concurrency import (
    CancellationToken,
    WorkerPool,
    await_with_cancellation,
    sleep_with_cancellation,
)

if TYPE_CHECKING:
    from canvas_orchestrator.domain.models import JSONValue
    from canvas_orchestrator.observability.events import EventBus
    from canvas_orchestrator.orchestration.session import Session
    from canvas_orchestrator.providers.registry import ProviderRegistry

UTC = timezone.utc

ProviderAdapter: TypeAlias = SyncProvider | AsyncJobProvider
ClockFn = Callable[[], float]
WallClockFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]

_DEFAULT_USER_MESSAGE: Final[str] = "No provider could complete this request."
_USER_MESSAGES: Final[Mapping[FailureClass, str]] = {
    FailureClass.MISSING_CREDENTIAL: (
        "No provider could complete this request. Check your API keys in settings."
    ),
    FailureClass.CAPABILITY_UNAVAILABLE: (
        "None of your configured providers offer this feature for your account."
    ),
    FailureClass.QUOTA_EXCEEDED: (
        "Every available provider is rate limited or out of credits. Try again later."
    ),
    FailureClass.CONTENT_REJECTED: (
        "The request was blocked by the provider's content policy. Try rephrasing it."
    ),
    FailureClass.TIMEOUT: "Providers took too long to respond. Try again in a moment.",
    FailureClass.TRANSIENT_NETWORK: (
        "Network problems prevented the request from completing. Check your connection."
    ),
    FailureClass.SUBMISSION_REJECTED: (
        "The provider rejected the request inputs. Check the image or file and try again."
    ),
    FailureClass.INVALID_REQUEST: "The request was invalid. Check the inputs and try again.",
}


def user_message_for(failure: FailureClass | None) -> str:
    if failure is None:
        return _DEFAULT_USER_MESSAGE
    return _USER_MESSAGES.get(failure, _DEFAULT_USER_MESSAGE)


class OrchestrationError(Exception):
    """A run that produced no artifact. Carries every attempt made."""

    def __init__(
        self,
        message: str,
        *,
        capability: Capability,
        attempts: Iterable[AttemptRecord] = (),
        skipped: Iterable[SkippedTier] = (),
        failure: FailureClass | None = None,
        run_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.capability = capability
        self.attempts = tuple(attempts)
        self.skipped = tuple(skipped)
        self.failure = failure
        self.run_id = run_id

    @property
    def user_message(self) -> str:
        return user_message_for(self.failure)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "capability": self.capability.value,
            "failure": None if self.failure is None else self.failure.value,
            "user_message": self.user_message,
            "run_id": self.run_id,
            "attempts": [item.to_dict() for item in self.attempts],
            "skipped": [item.to_dict() for item in self.skipped],
        }


class MissingCredentialError(OrchestrationError):
    """No tier of the capability has a usable credential."""


class TerminalFailureError(OrchestrationError):
    """A tier failed in a way that would recur identically on every other tier."""


class AllProvidersFailedError(OrchestrationError):
    """Every eligible tier failed with a fallback-eligible classification."""


class OrchestrationTimeoutError(OrchestrationError):
    """A second timeout in the same run."""


@dataclass(frozen=True, slots=True)
class OrchestrationResult:
    """Successful run: the artifact plus the full attempt history."""

    artifact: Artifact
    capability: Capability
    attempts: tuple[AttemptRecord, ...]
    skipped: tuple[SkippedTier, ...] = ()
    run_id: str | None = None

    def __post_init__(self) -> None:
        if not self.attempts:
            raise ValueError("OrchestrationResult.attempts cannot be empty")
        if self.attempts[-1].outcome is not AttemptOutcome.SUCCESS:
            raise ValueError("the final attempt of a successful run must be a success")

    @property
    def tier_index(self) -> int:
        return self.attempts[-1].tier_index

    @property
    def provider_id(self) -> str:
        return self.attempts[-1].provider_id

    @property
    def used_fallback(self) -> bool:
        return self.tier_index > 0

    @property
    def provenance_note(self) -> str | None:
        if not self.used_fallback:
            return None
        return f"produced by fallback tier {self.tier_index + 1}"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.run_id,
            "capability": self.capability.value,
            "tier_index": self.tier_index,
            "provider_id": self.provider_id,
            "provenance_note": self.provenance_note,
            "artifact": self.artifact.to_dict(),
            "attempts": [item.to_dict() for item in self.attempts],
            "skipped": [item.to_dict() for item in self.skipped],
        }


@dataclass(frozen=True, slots=True)
class BatchItemResult:
    index: int
    result: OrchestrationResult | None = None
    error: OrchestrationError | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class _TierFailure(Exception):
    def __init__(self, error: ProviderError, retries: int) -> None:
        super().__init__(str(error))
        self.error = error
        self.retries = retries


class FallbackOrchestrator:
    """Tiered fallback across providers for one capability at a time."""

    def __init__(
        self,
        registry: ProviderRegistry,
        adapters: Mapping[str, ProviderAdapter],
        *,
        poller: JobPoller | None = None,
        credentials: CredentialResolver | None = None,
        retry_backoff: BackoffConfig | None = None,
        probe_interval_runs: int = 10,
        batch_concurrency: int = 4,
        clock: ClockFn = time.monotonic,
        wall_clock: WallClockFn | None = None,
        sleep: SleepFn = asyncio.sleep,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
    ) -> None:
        if probe_interval_runs < 0:
            raise ValueError("probe_interval_runs must be >= 0")
        if batch_concurrency <= 0:
            raise ValueError("batch_concurrency must be > 0")

        self._registry = registry
        self._adapters = dict(adapters)
        self._clock = clock
        self._wall_clock = wall_clock if wall_clock is not None else _utc_now
        self._sleep = sleep
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._poller = (
            poller
            if poller is not None
            else JobPoller(clock=clock, sleep=sleep, event_bus=event_bus, logger=self._logger)
        )
        self._credentials = credentials if credentials is not None else EnvironmentCredentials()
        self._retry_backoff = retry_backoff if retry_backoff is not None else BackoffConfig()
        self._probe_interval_runs = probe_interval_runs
        self._batch_concurrency = batch_concurrency

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def run(
        self,
        capability: Capability | str,
        request: ArtifactRequest,
        *,
        session: Session,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        prefer: str | None = None,
    ) -> OrchestrationResult:
        """Run ``request`` against the capability's tiers and return the first success.

        ``prefer`` moves one provider to tier 0 for this call only.
        """

        tier = self._registry.tiers_for(capability, session=session, prefer=prefer)
        resolved = tier.capability
        run_id = generate_run_id()

        with correlation_scope(session_id=session.session_id, run_id=run_id):
            return await self._run_tiers(
                resolved,
                request,
                tier_models=tier.providers,
                pinned=prefer is not None or resolved in session.pinned,
                session=session,
                run_id=run_id,
                cancel_token=cancel_token,
                on_progress=on_progress,
            )

    async def run_many(
        self,
        capability: Capability | str,
        requests: Iterable[ArtifactRequest],
        *,
        session: Session,
        concurrency: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[BatchItemResult]:
        """Run independent requests concurrently; results come back in input order."""

        limit = self._batch_concurrency if concurrency is None else concurrency
        pool: WorkerPool[BatchItemResult] = WorkerPool(
            max_concurrency=limit, cancel_token=cancel_token
        )

        async def run_one(index: int, item: ArtifactRequest) -> BatchItemResult:
            try:
                result = await self.run(
                    capability, item, session=session, cancel_token=cancel_token
                )
            except OrchestrationError as exc:
                return BatchItemResult(index=index, error=exc)
            return BatchItemResult(index=index, result=result)

        coroutines = [run_one(index, item) for index, item in enumerate(requests)]
        results = [item async for item in pool.run(coroutines)]
        return sorted(results, key=lambda item: item.index)

    async def _run_tiers(
        self,
        capability: Capability,
        request: ArtifactRequest,
        *,
        tier_models: tuple[ProviderModel, ...],
        pinned: bool,
        session: Session,
        run_id: str,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> OrchestrationResult:
        run_started = self._clock()
        self._emit(
            EventType.ORCHESTRATION_STARTED,
            run_id,
            capability=capability.value,
            session_id=session.session_id,
            tiers=[model.provider_id for model in tier_models],
        )

        attempts: list[AttemptRecord] = []
        skipped: list[SkippedTier] = []

        if not any(self._credentials.has_credential(model) for model in tier_models):
            skipped.extend(
                SkippedTier(index, model.provider_id, SkipReason.NO_CREDENTIAL)
                for index, model in enumerate(tier_models)
            )
            raise self._fail(
                MissingCredentialError,
                f"no credential configured for any {capability.value} provider",
                capability=capability,
                attempts=attempts,
                skipped=skipped,
                failure=FailureClass.MISSING_CREDENTIAL,
                run_id=run_id,
                run_started=run_started,
            )

        start_index = self._start_index(capability, tier_models, session, pinned=pinned)
        timeouts = 0

        try:
            for index, model in enumerate(tier_models):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()

                skip_reason = self._skip_reason(index, model, start_index, session)
                if skip_reason is not None:
                    skipped.append(SkippedTier(index, model.provider_id, skip_reason))
                    self._logger.info(
                        "tier_skipped",
                        run_id=run_id,
                        capability=capability.value,
                        tier_index=index,
                        provider_id=model.provider_id,
                        reason=skip_reason.value,
                    )
                    self._emit(
                        EventType.TIER_SKIPPED,
                        run_id,
                        capability=capability.value,
                        tier_index=index,
                        provider_id=model.provider_id,
                        reason=skip_reason.value,
                    )
                    continue

                attempt_request, downgrades = fit_request(request, model)
                for downgrade in downgrades:
                    self._logger.info(
                        "request_downgraded",
                        run_id=run_id,
                        tier_index=index,
                        provider_id=model.provider_id,
                        parameter=downgrade.parameter,
                        requested=downgrade.requested,
                        applied=downgrade.applied,
                    )
                    self._emit(
                        EventType.REQUEST_DOWNGRADED,
                        run_id,
                        capability=capability.value,
                        tier_index=index,
                        provider_id=model.provider_id,
                        **downgrade.to_dict(),
                    )

                started_at = self._wall_clock()
                attempt_started = self._clock()
                try:
                    artifact, retries = await self._attempt(
                        model,
                        attempt_request,
                        run_id=run_id,
                        tier_index=index,
                        cancel_token=cancel_token,
                        on_progress=on_progress,
                    )
                except _TierFailure as failure:
                    error = failure.error
                    record = AttemptRecord(
                        tier_index=index,
                        provider_id=model.provider_id,
                        outcome=AttemptOutcome.FAILURE,
                        failure=error.failure,
                        latency_ms=self._elapsed_ms(attempt_started),
                        started_at=started_at,
                        detail=error.detail,
                        downgrades=downgrades,
                        retries=failure.retries,
                    )
                    attempts.append(record)
                    self._record_failure(capability, record, run_id)

                    if error.failure.is_terminal:
                        raise self._fail(
                            TerminalFailureError,
                            f"{capability.value} stopped at tier {index}: {error}",
                            capability=capability,
                            attempts=attempts,
                            skipped=skipped,
                            failure=error.failure,
                            run_id=run_id,
                            run_started=run_started,
                        ) from error
                    if error.failure is FailureClass.QUOTA_EXCEEDED:
                        session.suppress(model.provider_id)
                    if error.failure is FailureClass.TIMEOUT:
                        timeouts += 1
                        if timeouts > 1:
                            raise self._fail(
                                OrchestrationTimeoutError,
                                f"{capability.value} timed out on {timeouts} tiers",
                                capability=capability,
                                attempts=attempts,
                                skipped=skipped,
                                failure=FailureClass.TIMEOUT,
                                run_id=run_id,
                                run_started=run_started,
                            ) from error
                    continue

                record = AttemptRecord(
                    tier_index=index,
                    provider_id=model.provider_id,
                    outcome=AttemptOutcome.SUCCESS,
                    failure=None,
                    latency_ms=self._elapsed_ms(attempt_started),
                    started_at=started_at,
                    downgrades=downgrades,
                    retries=retries,
                )
                attempts.append(record)
                # Indices of a pinned or preferred order do not map onto the catalog tiers.
                if not pinned:
                    session.remember_success(capability, model.provider_id)
                result = OrchestrationResult(
                    artifact=artifact,
                    capability=capability,
                    attempts=tuple(attempts),
                    skipped=tuple(skipped),
                    run_id=run_id,
                )
                latency_ms = self._elapsed_ms(run_started)
                self._logger.info(
                    "orchestration_succeeded",
                    run_id=run_id,
                    capability=capability.value,
                    tier_index=index,
                    provider_id=model.provider_id,
                    attempts=len(attempts),
                    latency_ms=latency_ms,
                )
                self._emit(
                    EventType.ORCHESTRATION_SUCCEEDED,
                    run_id,
                    capability=capability.value,
                    tier_index=index,
                    provider_id=model.provider_id,
                    attempts=len(attempts),
                    latency_ms=latency_ms,
                    outcome=AttemptOutcome.SUCCESS.value,
                    provenance_note=result.provenance_note,
                )
                return result
        except asyncio.CancelledError:
            latency_ms = self._elapsed_ms(run_started)
            self._logger.info(
                "orchestration_cancelled",
                run_id=run_id,
                capability=capability.value,
                attempts=len(attempts),
                latency_ms=latency_ms,
            )
            self._emit(
                EventType.ORCHESTRATION_CANCELLED,
                run_id,
                capability=capability.value,
                attempts=len(attempts),
                latency_ms=latency_ms,
                outcome="cancelled",
            )
            raise

        session.forget(capability)
        error_type: type[OrchestrationError] = AllProvidersFailedError
        if attempts and all(
            item.failure is FailureClass.MISSING_CREDENTIAL for item in attempts
        ):
            error_type = MissingCredentialError
        raise self._fail(
            error_type,
            f"all {capability.value} providers failed "
            f"({len(attempts)} attempted, {len(skipped)} skipped)",
            capability=capability,
            attempts=attempts,
            skipped=skipped,
            failure=_final_failure(attempts, skipped),
            run_id=run_id,
            run_started=run_started,
        )

    async def _attempt(
        self,
        model: ProviderModel,
        request: ArtifactRequest,
        *,
        run_id: str,
        tier_index: int,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> tuple[Artifact, int]:
        adapter = self._adapters[model.provider_id]
        retries = 0
        while True:
            try:
                artifact = await self._invoke(
                    adapter,
                    model,
                    request,
                    cancel_token=cancel_token,
                    on_progress=on_progress,
                )
                return artifact, retries
            except Exception as exc:  # noqa: BLE001
                error = classify_exception(exc, provider=model.provider_id)
                # Poll-call failures leave the job state unknown; never resubmit on this tier.
                exhausted = retries >= self._retry_backoff.max_retries
                if not error.retryable or exhausted or isinstance(error, PollFailedError):
                    raise _TierFailure(error, retries) from exc

            retries += 1
            delay = compute_backoff_delay(retry_number=retries, config=self._retry_backoff)
            self._logger.info(
                "attempt_retry",
                run_id=run_id,
                tier_index=tier_index,
                provider_id=model.provider_id,
                retry=retries,
                delay_seconds=delay,
                failure=error.failure.value,
            )
            await sleep_with_cancellation(delay, sleep=self._sleep, cancel_token=cancel_token)

    async def _invoke(
        self,
        adapter: ProviderAdapter,
        model: ProviderModel,
        request: ArtifactRequest,
        *,
        cancel_token: CancellationToken | None,
        on_progress: ProgressCallback | None,
    ) -> Artifact:
        if model.is_async:
            return await self._poller.run(
                adapter,  # type: ignore[arg-type]
                request,
                model=model,
                on_progress=on_progress,
                cancel_token=cancel_token,
            )
        return await await_with_cancellation(
            adapter.invoke(model, request),  # type: ignore[union-attr]
            cancel_token=cancel_token,
        )

    def _start_index(
        self,
        capability: Capability,
        tier_models: tuple[ProviderModel, ...],
        session: Session,
        *,
        pinned: bool,
    ) -> int:
        if pinned:
            return 0
        remembered = session.remembered_provider(capability)
        if remembered is None:
            return 0
        index = next(
            (i for i, model in enumerate(tier_models) if model.provider_id == remembered),
            None,
        )
        if index is None or index == 0:
            return 0
        if session.should_probe(capability, self._probe_interval_runs):
            self._logger.info(
                "tier_probe",
                capability=capability.value,
                remembered_provider_id=remembered,
                remembered_tier_index=index,
            )
            return 0
        return index

    def _skip_reason(
        self,
        index: int,
        model: ProviderModel,
        start_index: int,
        session: Session,
    ) -> SkipReason | None:
        if index < start_index:
            return SkipReason.REMEMBERED_TIER
        if session.is_suppressed(model.provider_id):
            return SkipReason.QUOTA_SUPPRESSED
        if not self._credentials.has_credential(model):
            return SkipReason.NO_CREDENTIAL
        adapter = self._adapters.get(model.provider_id)
        if adapter is None:
            return SkipReason.NO_ADAPTER
        expected: type[Any] = AsyncJobProvider if model.is_async else SyncProvider
        if not isinstance(adapter, expected):
            return SkipReason.NO_ADAPTER
        return None

    def _record_failure(self, capability: Capability, record: AttemptRecord, run_id: str) -> None:
        failure = record.failure.value if record.failure is not None else None
        self._logger.info(
            "attempt_failed",
            run_id=run_id,
            capability=capability.value,
            tier_index=record.tier_index,
            provider_id=record.provider_id,
            failure=failure,
            retries=record.retries,
            latency_ms=record.latency_ms,
        )
        self._emit(
            EventType.ATTEMPT_FAILED,
            run_id,
            capability=capability.value,
            tier_index=record.tier_index,
            provider_id=record.provider_id,
            failure=failure,
            retries=record.retries,
            latency_ms=record.latency_ms,
            outcome=AttemptOutcome.FAILURE.value,
        )

    def _fail(
        self,
        error_type: type[OrchestrationError],
        message: str,
        *,
        capability: Capability,
        attempts: list[AttemptRecord],
        skipped: list[SkippedTier],
        failure: FailureClass | None,
        run_id: str,
        run_started: float,
    ) -> OrchestrationError:
        error = error_type(
            message,
            capability=capability,
            attempts=attempts,
            skipped=skipped,
            failure=failure,
            run_id=run_id,
        )
        latency_ms = self._elapsed_ms(run_started)
        self._logger.info(
            "orchestration_failed",
            run_id=run_id,
            capability=capability.value,
            error=error_type.__name__,
            failure=None if failure is None else failure.value,
            attempts=len(attempts),
            skipped=len(skipped),
            latency_ms=latency_ms,
        )
        self._emit(
            EventType.ORCHESTRATION_FAILED,
            run_id,
            capability=capability.value,
            error=error_type.__name__,
            failure=None if failure is None else failure.value,
            attempts=len(attempts),
            latency_ms=latency_ms,
            outcome=AttemptOutcome.FAILURE.value,
        )
        return error

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int(round((self._clock() - started) * 1000)))

    def _emit(self, event_type: EventType, run_id: str, **payload: object) -> None:
        if self._event_bus is None:
            return
        self._event_bus.emit(event_type, {"run_id": run_id, **payload}, correlation_id=run_id)


def fit_request(
    request: ArtifactRequest,
    model: ProviderModel,
) -> tuple[ArtifactRequest, tuple[Downgrade, ...]]:
    """Clamp ``request`` to ``model``'s declared limits instead of skipping the tier."""

    limit = model.max_output_size
    requested = request.output_size
    if limit is None or requested is None or requested <= limit:
        return request, ()
    downgrade = Downgrade(parameter="output_size", requested=requested, applied=limit)
    return request.with_output_size(limit), (downgrade,)


def _final_failure(
    attempts: list[AttemptRecord],
    skipped: list[SkippedTier],
) -> FailureClass:
    if attempts and attempts[-1].failure is not None:
        return attempts[-1].failure
    reasons = {item.reason for item in skipped}
    if SkipReason.QUOTA_SUPPRESSED in reasons:
        return FailureClass.QUOTA_EXCEEDED
    if reasons == {SkipReason.NO_CREDENTIAL}:
        return FailureClass.MISSING_CREDENTIAL
    return FailureClass.CAPABILITY_UNAVAILABLE


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


__all__ = [
    "AllProvidersFailedError",
    "BatchItemResult",
    "FallbackOrchestrator",
    "MissingCredentialError",
    "OrchestrationError",
    "OrchestrationResult",
    "OrchestrationTimeoutError",
    "ProviderAdapter",
    "TerminalFailureError",
    "fit_request",
    "user_message_for",
]
