"""
canvas-orchestrator — provider contracts and failure taxonomy

File: src/canvas_orchestrator/providers/base.py
Last updated: 2026-10-19

Purpose
- Abstract provider interfaces (synchronous invoke, asynchronous submit/poll/cancel).
- Normalized provider errors and classification of arbitrary adapter exceptions.

What should be included in this file
- ``ProviderError`` with one subclass per ``FailureClass``.
- ``classify_exception`` heuristics over HTTP status codes and error text.
- Bounded exponential backoff policy shared by the orchestrator and the poller.
- Credential resolution against the process environment.

Functional requirements
- Every failure leaving an adapter must be mapped to exactly one failure class.

Non-functional requirements
- Adding a provider must not require touching orchestration code.
"""

from __future__ import annotations

import asyncio
import os
import random as random_module
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, Protocol, TypeAlias, TypeVar, runtime_checkable

from canvas_orchestrator.domain.models import FailureClass, FailureDisposition

if TYPE_CHECKING:
    from canvas_orchestrator.domain.models import (
        Artifact,
        ArtifactRequest,
        JobSnapshot,
        ProviderModel,
    )

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]

_MAX_DETAIL_LENGTH: Final[int] = 512
_STATUS_IN_TEXT: Final[re.Pattern[str]] = re.compile(r"\b([45]\d\d)\b")

_CREDENTIAL_MARKERS: Final[tuple[str, ...]] = (
    "unauthorized",
    "api key",
    "api_key",
    "invalid key",
    "forbidden",
    "permission denied",
)
_QUOTA_MARKERS: Final[tuple[str, ...]] = (
    "rate limit",
    "rate-limit",
    "quota",
    "insufficient credit",
    "too many requests",
    "billing",
)
_CONTENT_MARKERS: Final[tuple[str, ...]] = (
    "safety",
    "blocked",
    "nsfw",
    "content policy",
    "flagged",
)
_UNAVAILABLE_MARKERS: Final[tuple[str, ...]] = (
    "not found",
    "not available",
    "unsupported model",
    "does not support",
)
_TIMEOUT_MARKERS: Final[tuple[str, ...]] = ("timeout", "timed out", "aborted")
_NETWORK_MARKERS: Final[tuple[str, ...]] = (
    "network",
    "fetch",
    "connection",
    "offline",
    "econnreset",
    "temporarily unavailable",
)


def _validate_non_empty_str(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


def _normalize_detail(value: object) -> str:
    text = " ".join(str(value).split())
    if not text:
        return "no detail"
    if len(text) > _MAX_DETAIL_LENGTH:
        return text[: _MAX_DETAIL_LENGTH - 3] + "..."
    return text


class ProviderError(RuntimeError):
    """Normalized provider failure with a machine-readable failure class."""

    failure_class: FailureClass = FailureClass.PROVIDER_ERROR

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        failure: FailureClass | None = None,
        http_status: int | None = None,
    ) -> None:
        self.provider = _validate_non_empty_str(provider, "provider")
        self.failure = failure if failure is not None else type(self).failure_class
        self.detail = _normalize_detail(detail)
        self.http_status = http_status

        parts = [f"provider={self.provider}", f"failure={self.failure.value}"]
        if self.http_status is not None:
            parts.append(f"http_status={self.http_status}")
        parts.append(f"detail={self.detail}")
        super().__init__(" ".join(parts))

    @property
    def disposition(self) -> FailureDisposition:
        return self.failure.disposition

    @property
    def retryable(self) -> bool:
        return self.failure.disposition is FailureDisposition.RETRY_SAME_TIER


class MissingCredentialProviderError(ProviderError):
    """Credential absent or rejected by this provider."""

    failure_class = FailureClass.MISSING_CREDENTIAL


class CapabilityUnavailableError(ProviderError):
    """Provider lacks the requested model/capability for this caller."""

    failure_class = FailureClass.CAPABILITY_UNAVAILABLE


class QuotaExceededError(ProviderError):
    failure_class = FailureClass.QUOTA_EXCEEDED


class ContentRejectedError(ProviderError):
    """Safety or policy block. The input is the problem, so no tier will accept it."""

    failure_class = FailureClass.CONTENT_REJECTED


class ProviderTimeoutError(ProviderError):
    failure_class = FailureClass.TIMEOUT


class TransientNetworkError(ProviderError):
    failure_class = FailureClass.TRANSIENT_NETWORK


class SubmissionRejectedError(ProviderError):
    """Async provider refused the workload at submit time."""

    failure_class = FailureClass.SUBMISSION_REJECTED


class InvalidRequestError(ProviderError):
    failure_class = FailureClass.INVALID_REQUEST


class ProviderServiceError(ProviderError):
    failure_class = FailureClass.PROVIDER_ERROR


class PollTimeoutError(ProviderTimeoutError):
    """Job did not reach a terminal status before the poller's wall-clock deadline."""


class PollFailedError(TransientNetworkError):
    """The status request itself kept failing; the job's real state is unknown."""


_ERROR_TYPES: Final[Mapping[FailureClass, type[ProviderError]]] = {
    FailureClass.MISSING_CREDENTIAL: MissingCredentialProviderError,
    FailureClass.CAPABILITY_UNAVAILABLE: CapabilityUnavailableError,
    FailureClass.QUOTA_EXCEEDED: QuotaExceededError,
    FailureClass.CONTENT_REJECTED: ContentRejectedError,
    FailureClass.TIMEOUT: ProviderTimeoutError,
    FailureClass.TRANSIENT_NETWORK: TransientNetworkError,
    FailureClass.SUBMISSION_REJECTED: SubmissionRejectedError,
    FailureClass.INVALID_REQUEST: InvalidRequestError,
    FailureClass.PROVIDER_ERROR: ProviderServiceError,
}


def error_for(
    failure: FailureClass,
    detail: str,
    *,
    provider: str,
    http_status: int | None = None,
) -> ProviderError:
    """Instantiate the ``ProviderError`` subclass registered for ``failure``."""

    return _ERROR_TYPES[failure](detail, provider=provider, http_status=http_status)


def classify_status(http_status: int) -> FailureClass:
    if http_status in (401, 403):
        return FailureClass.MISSING_CREDENTIAL
    if http_status in (402, 429):
        return FailureClass.QUOTA_EXCEEDED
    if http_status == 404:
        return FailureClass.CAPABILITY_UNAVAILABLE
    if http_status in (400, 422):
        return FailureClass.INVALID_REQUEST
    if http_status == 408:
        return FailureClass.TIMEOUT
    if http_status in (502, 503, 504):
        return FailureClass.TRANSIENT_NETWORK
    return FailureClass.PROVIDER_ERROR


def classify_text(text: str) -> FailureClass | None:
    """Best-effort classification from an error message; ``None`` when nothing matches."""

    lowered = text.lower()
    if any(marker in lowered for marker in _CONTENT_MARKERS):
        return FailureClass.CONTENT_REJECTED
    if any(marker in lowered for marker in _CREDENTIAL_MARKERS):
        return FailureClass.MISSING_CREDENTIAL
    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return FailureClass.QUOTA_EXCEEDED
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return FailureClass.TIMEOUT
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return FailureClass.CAPABILITY_UNAVAILABLE
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return FailureClass.TRANSIENT_NETWORK
    match = _STATUS_IN_TEXT.search(lowered)
    if match is not None:
        return classify_status(int(match.group(1)))
    return None


def classify_exception(exc: BaseException, *, provider: str) -> ProviderError:
    """Map any adapter exception onto the normalized ``ProviderError`` taxonomy."""

    if isinstance(exc, ProviderError):
        return exc

    detail = str(exc) or type(exc).__name__
    http_status = _http_status_of(exc)

    failure: FailureClass | None = None
    if isinstance(exc, TimeoutError):
        failure = FailureClass.TIMEOUT
    elif isinstance(exc, (ConnectionError, OSError)):
        failure = FailureClass.TRANSIENT_NETWORK
    elif http_status is not None:
        failure = classify_status(http_status)
        if failure is FailureClass.INVALID_REQUEST:
            # 400 responses from image APIs often carry a safety verdict.
            text_failure = classify_text(detail)
            if text_failure is FailureClass.CONTENT_REJECTED:
                failure = text_failure
    if failure is None:
        failure = classify_text(detail) or FailureClass.PROVIDER_ERROR

    return error_for(failure, detail, provider=provider, http_status=http_status)


def _http_status_of(exc: BaseException) -> int | None:
    for attribute in ("http_status", "status_code", "status"):
        value = getattr(exc, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


@runtime_checkable
class SyncProvider(Protocol):
    """Provider that returns an artifact from a single awaited call."""

    async def invoke(self, model: ProviderModel, request: ArtifactRequest) -> Artifact: ...


@runtime_checkable
class AsyncJobProvider(Protocol):
    """Provider that executes work out-of-band behind a submit/poll/cancel contract."""

    async def submit(self, model: ProviderModel, request: ArtifactRequest) -> str: ...

    async def poll(self, job_id: str) -> JobSnapshot: ...

    async def cancel(self, job_id: str) -> None: ...


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy."""

    max_retries: int = 2
    initial_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 8.0
    jitter_ratio: float = 0.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError("initial_delay_seconds must be <= max_delay_seconds")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")


def compute_backoff_delay(
    *,
    retry_number: int,
    config: BackoffConfig,
    random_fn: RandomFn = random_module.random,
) -> float:
    """Return bounded exponential backoff delay for retry attempt N (1-based)."""

    if retry_number <= 0:
        raise ValueError("retry_number must be > 0")

    base_delay = config.initial_delay_seconds * (config.multiplier ** (retry_number - 1))
    bounded_delay = min(base_delay, config.max_delay_seconds)
    if config.jitter_ratio == 0.0:
        return bounded_delay

    random_value = random_fn()
    if not (0.0 <= random_value <= 1.0):
        raise ValueError("random_fn must return values in [0.0, 1.0]")

    max_jitter = bounded_delay * config.jitter_ratio
    jitter = ((random_value * 2.0) - 1.0) * max_jitter
    return max(0.0, min(config.max_delay_seconds, bounded_delay + jitter))


_ResultT = TypeVar("_ResultT")
RetryCallback: TypeAlias = Callable[[int, ProviderError, float], None]
RetryPredicate: TypeAlias = Callable[[ProviderError], bool]


async def run_with_retries(
    operation: Callable[[], Awaitable[_ResultT]],
    *,
    provider: str,
    backoff: BackoffConfig,
    sleep: SleepFn = asyncio.sleep,
    random_fn: RandomFn = random_module.random,
    on_retry: RetryCallback | None = None,
    retry_on: RetryPredicate | None = None,
) -> _ResultT:
    """Run an async operation, retrying only failures classified as transient.

    ``retry_on`` widens or narrows what counts as transient; it defaults to
    ``ProviderError.retryable``.
    """

    retry_count = 0
    while True:
        try:
            return await operation()
        except Exception as exc:  # noqa: BLE001
            mapped = classify_exception(exc, provider=provider)
            transient = mapped.retryable if retry_on is None else retry_on(mapped)
            if not transient or retry_count >= backoff.max_retries:
                if mapped is exc:
                    raise
                raise mapped from exc

            retry_count += 1
            delay_seconds = compute_backoff_delay(
                retry_number=retry_count,
                config=backoff,
                random_fn=random_fn,
            )
            if on_retry is not None:
                on_retry(retry_count, mapped, delay_seconds)
            await sleep(delay_seconds)


class CredentialResolver(Protocol):
    def has_credential(self, model: ProviderModel) -> bool: ...


class EnvironmentCredentials:
    """Resolve provider credentials from environment variables named in the catalog."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def has_credential(self, model: ProviderModel) -> bool:
        if model.credential_env is None:
            return True
        value = self._environ.get(model.credential_env, "")
        return bool(value.strip())


__all__ = [
    "AsyncJobProvider",
    "BackoffConfig",
    "CapabilityUnavailableError",
    "ContentRejectedError",
    "CredentialResolver",
    "EnvironmentCredentials",
    "InvalidRequestError",
    "MissingCredentialProviderError",
    "PollFailedError",
    "PollTimeoutError",
    "ProviderError",
    "ProviderServiceError",
    "ProviderTimeoutError",
    "QuotaExceededError",
    "SubmissionRejectedError",
    "SyncProvider",
    "TransientNetworkError",
    "classify_exception",
    "classify_status",
    "classify_text",
    "compute_backoff_delay",
    "error_for",
    "run_with_retries",
]
