"""Event envelope and vocabulary published by runs, jobs and pending actions."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Final, cast

from canvas_orchestrator.domain.ids import generate_event_id, validate_event_id
from canvas_orchestrator.domain.models import JSONValue, coerce_json_mapping

UTC = timezone.utc

REDACTED: Final[str] = "***REDACTED***"
_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "apikey",
    "authorization",
    "cookie",
)


class EventType(StrEnum):
    ORCHESTRATION_STARTED = "OrchestrationStarted"
    TIER_SKIPPED = "TierSkipped"
    REQUEST_DOWNGRADED = "RequestDowngraded"
    ATTEMPT_FAILED = "AttemptFailed"
    ORCHESTRATION_SUCCEEDED = "OrchestrationSucceeded"
    ORCHESTRATION_FAILED = "OrchestrationFailed"
    ORCHESTRATION_CANCELLED = "OrchestrationCancelled"

    JOB_SUBMITTED = "JobSubmitted"
    JOB_PROGRESSED = "JobProgressed"
    JOB_TIMED_OUT = "JobTimedOut"
    JOB_CANCELLED = "JobCancelled"

    ACTION_QUEUED = "ActionQueued"
    ACTION_EXECUTING = "ActionExecuting"
    ACTION_AWAITING_APPROVAL = "ActionAwaitingApproval"
    ACTION_APPLIED = "ActionApplied"
    ACTION_DISCARDED = "ActionDiscarded"
    ACTION_FAILED = "ActionFailed"
    ACTION_CANCELLED = "ActionCancelled"
    ACTION_REVERTED = "ActionReverted"


@dataclass(frozen=True, slots=True)
class OrchestratorEvent:
    """One structured event, ready to hand to an external log sink.

    ``payload`` is normalized to plain JSON on construction so sinks never see
    enums, tuples or non-finite floats.
    """

    event_type: EventType
    payload: dict[str, JSONValue] = field(default_factory=dict)
    correlation_id: str | None = None
    event_id: str = field(default_factory=generate_event_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        validate_event_id(self.event_id)
        object.__setattr__(self, "event_type", EventType(self.event_type))
        if self.timestamp.tzinfo is None:
            raise ValueError("OrchestratorEvent.timestamp must be timezone-aware")
        object.__setattr__(self, "timestamp", self.timestamp.astimezone(UTC))
        if self.correlation_id is not None and not self.correlation_id.strip():
            raise ValueError("OrchestratorEvent.correlation_id must not be blank")
        object.__setattr__(self, "payload", coerce_json_mapping(self.payload, path="payload"))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(timespec="microseconds").replace("+00:00", "Z"),
            "correlation_id": self.correlation_id,
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def is_sensitive_key(key: str) -> bool:
    """Secret-looking keys; ``*_env`` names an environment variable, not its value."""

    lowered = key.lower()
    if lowered.endswith("_env"):
        return False
    return any(term in lowered for term in _SENSITIVE_KEY_TERMS)


def redact_json(value: JSONValue) -> JSONValue:
    if isinstance(value, dict):
        return {
            key: REDACTED if is_sensitive_key(key) else redact_json(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact_json(item) for item in value]
    return value


def redact_sensitive(event: OrchestratorEvent) -> OrchestratorEvent:
    """Copy of ``event`` with secret-looking payload keys redacted at any depth."""

    return OrchestratorEvent(
        event_type=event.event_type,
        payload=cast("dict[str, JSONValue]", redact_json(event.payload)),
        correlation_id=event.correlation_id,
        event_id=event.event_id,
        timestamp=event.timestamp,
    )


__all__ = [
    "REDACTED",
    "EventType",
    "OrchestratorEvent",
    "is_sensitive_key",
    "redact_json",
    "redact_sensitive",
]
