"""Orchestration: session state, async job polling, and tiered fallback."""

from canvas_orchestrator.orchestration.fallback import (
    AllProvidersFailedError,
    BatchItemResult,
    FallbackOrchestrator,
    MissingCredentialError,
    OrchestrationError,
    OrchestrationResult,
    OrchestrationTimeoutError,
    ProviderAdapter,
    TerminalFailureError,
    fit_request,
    user_message_for,
)
from canvas_orchestrator.orchestration.poller import JobPoller, PollPolicy, ProgressCallback
from canvas_orchestrator.orchestration.session import Session

__all__ = [
    "AllProvidersFailedError",
    "BatchItemResult",
    "FallbackOrchestrator",
    "JobPoller",
    "MissingCredentialError",
    "OrchestrationError",
    "OrchestrationResult",
    "OrchestrationTimeoutError",
    "PollPolicy",
    "ProgressCallback",
    "ProviderAdapter",
    "Session",
    "TerminalFailureError",
    "fit_request",
    "user_message_for",
]
