"""
canvas-orchestrator — provider layer

File: src/canvas_orchestrator/providers/__init__.py
Last updated: 2026-10-19

Purpose
- Provider contracts, failure classification, and the static provider registry.

What should be included in this file
- Re-exports for adapter authors and orchestration code.

Non-functional requirements
- Concrete transports live outside this package; only abstract contracts belong here.
"""

from canvas_orchestrator.providers.base import (
    AsyncJobProvider,
    BackoffConfig,
    CapabilityUnavailableError,
    ContentRejectedError,
    CredentialResolver,
    EnvironmentCredentials,
    InvalidRequestError,
    MissingCredentialProviderError,
    PollFailedError,
    PollTimeoutError,
    ProviderError,
    ProviderServiceError,
    ProviderTimeoutError,
    QuotaExceededError,
    SubmissionRejectedError,
    SyncProvider,
    TransientNetworkError,
    classify_exception,
    compute_backoff_delay,
    error_for,
    run_with_retries,
)
from canvas_orchestrator.providers.registry import (
    ProviderRegistry,
    RegistryError,
    UnknownCapabilityError,
    UnknownProviderError,
    load_registry,
)

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
    "ProviderRegistry",
    "ProviderServiceError",
    "ProviderTimeoutError",
    "QuotaExceededError",
    "RegistryError",
    "SubmissionRejectedError",
    "SyncProvider",
    "TransientNetworkError",
    "UnknownCapabilityError",
    "UnknownProviderError",
    "classify_exception",
    "compute_backoff_delay",
    "error_for",
    "load_registry",
    "run_with_retries",
]
