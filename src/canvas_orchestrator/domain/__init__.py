"""
canvas-orchestrator — domain layer

File: src/canvas_orchestrator/domain/__init__.py
Last updated: 2026-10-19

Purpose
- Value types shared by the registry, the poller, the orchestrator and the action executor.

What should be included in this file
- Re-export of core domain entities for convenience.
- Keep the domain layer free of IO side effects.
"""

from canvas_orchestrator.domain.events import EventType, OrchestratorEvent, redact_sensitive
from canvas_orchestrator.domain.models import (
    Artifact,
    ArtifactRequest,
    AttemptOutcome,
    AttemptRecord,
    Capability,
    CapabilityTier,
    Downgrade,
    FailureClass,
    FailureDisposition,
    JobHandle,
    JobProgress,
    JobSnapshot,
    JobStatus,
    ProviderModel,
    SkippedTier,
    SkipReason,
    resolve_output_size,
)

__all__ = [
    "Artifact",
    "ArtifactRequest",
    "AttemptOutcome",
    "AttemptRecord",
    "Capability",
    "CapabilityTier",
    "Downgrade",
    "EventType",
    "FailureClass",
    "FailureDisposition",
    "JobHandle",
    "JobProgress",
    "JobSnapshot",
    "JobStatus",
    "OrchestratorEvent",
    "ProviderModel",
    "SkipReason",
    "SkippedTier",
    "redact_sensitive",
    "resolve_output_size",
]
