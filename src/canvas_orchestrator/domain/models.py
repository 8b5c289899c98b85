"""
canvas-orchestrator — shared value types.

File: src/canvas_orchestrator/domain/models.py
Last updated: 2026-10-19

Purpose
- Provider metadata, tier lists, request/artifact payloads, attempt records and job state.

What should be included in this file
- Capability and failure vocabularies as ``StrEnum`` values.
- Immutable, validated dataclasses for everything that crosses a component seam.
- The mutable ``JobHandle`` owned by the job poller.

Functional requirements
- Attempt records and artifacts must serialize to plain JSON for observability events.

Non-functional requirements
- No IO; importing this module must not touch the network, disk, or environment.
"""

from __future__ import annotations

import dataclasses
import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import TYPE_CHECKING, Final, TypeAlias

from canvas_orchestrator.domain import ids

if TYPE_CHECKING:
    from canvas_orchestrator.providers.base import AsyncJobProvider

UTC = timezone.utc

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

OUTPUT_SIZE_PRESETS: Final[Mapping[str, int]] = {"1K": 1024, "2K": 2048, "4K": 4096}
DEFAULT_OUTPUT_PRESET: Final[str] = "2K"


class Capability(StrEnum):
    """Category of generative work that several providers may serve."""

    IMAGE_GENERATION = "image-generation"
    IMAGE_EDIT = "image-edit"
    BACKGROUND_REMOVAL = "background-removal"
    UPSCALE = "upscale"
    RESTORATION = "restoration"
    FACE_ENHANCEMENT = "face-enhancement"
    CHAT = "chat"
    VOICE_TOOL = "voice-tool"


class FailureDisposition(StrEnum):
    """What the orchestrator does after a classified failure."""

    FALLBACK = "fallback"
    RETRY_SAME_TIER = "retry_same_tier"
    TERMINAL = "terminal"


class FailureClass(StrEnum):
    """Normalized failure classification shared by providers and the orchestrator."""

    MISSING_CREDENTIAL = "missing_credential"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"
    QUOTA_EXCEEDED = "quota_exceeded"
    CONTENT_REJECTED = "content_rejected"
    TIMEOUT = "timeout"
    TRANSIENT_NETWORK = "transient_network"
    SUBMISSION_REJECTED = "submission_rejected"
    INVALID_REQUEST = "invalid_request"
    PROVIDER_ERROR = "provider_error"

    @property
    def disposition(self) -> FailureDisposition:
        return _DISPOSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return self.disposition is FailureDisposition.TERMINAL


_DISPOSITIONS: Final[Mapping[FailureClass, FailureDisposition]] = {
    FailureClass.MISSING_CREDENTIAL: FailureDisposition.FALLBACK,
    FailureClass.CAPABILITY_UNAVAILABLE: FailureDisposition.FALLBACK,
    FailureClass.QUOTA_EXCEEDED: FailureDisposition.FALLBACK,
    FailureClass.CONTENT_REJECTED: FailureDisposition.TERMINAL,
    FailureClass.TIMEOUT: FailureDisposition.FALLBACK,
    FailureClass.TRANSIENT_NETWORK: FailureDisposition.RETRY_SAME_TIER,
    FailureClass.SUBMISSION_REJECTED: FailureDisposition.TERMINAL,
    FailureClass.INVALID_REQUEST: FailureDisposition.TERMINAL,
    FailureClass.PROVIDER_ERROR: FailureDisposition.FALLBACK,
}


class AttemptOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class SkipReason(StrEnum):
    """Why a tier was passed over without being invoked."""

    NO_CREDENTIAL = "no_credential"
    QUOTA_SUPPRESSED = "quota_suppressed"
    REMEMBERED_TIER = "remembered_tier"
    NO_ADAPTER = "no_adapter"


class JobStatus(StrEnum):
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_JOB_STATUSES


_TERMINAL_JOB_STATUSES: Final[frozenset[JobStatus]] = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED}
)


def _validate_non_empty_str(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


def _validate_optional_str(value: str | None, field_name: str) -> str | None:
    if value is None:
        return None
    return _validate_non_empty_str(value, field_name)


def _validate_score(value: object, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{field_name} must be numeric")
    parsed = float(value)
    if not math.isfinite(parsed) or parsed < 0:
        raise ValueError(f"{field_name} must be a finite number >= 0")
    return parsed


def _validate_optional_size(value: int | None, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{field_name} must be an integer")
    if value <= 0:
        raise ValueError(f"{field_name} must be > 0")
    return value


def _coerce_json_value(value: object, *, path: str) -> JSONValue:
    if isinstance(value, str):
        return str(value)
    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path} must be finite")
        return value
    if isinstance(value, Mapping):
        return coerce_json_mapping(value, path=path)
    if isinstance(value, (list, tuple)):
        return [_coerce_json_value(item, path=f"{path}[]") for item in value]
    raise TypeError(f"{path} must be JSON-serializable")


def coerce_json_mapping(mapping: Mapping[str, object], *, path: str) -> dict[str, JSONValue]:
    """Plain-JSON copy of ``mapping``; ``TypeError`` names the first offending path."""

    out: dict[str, JSONValue] = {}
    for key, value in mapping.items():
        if not isinstance(key, str):
            raise TypeError(f"{path} keys must be strings")
        out[key] = _coerce_json_value(value, path=f"{path}.{key}")
    return out


def resolve_output_size(value: int | str | None) -> int | None:
    """Normalize an output size given as pixels or as a ``1K``/``2K``/``4K`` preset."""

    if value is None:
        return None
    if isinstance(value, str):
        preset = value.strip().upper()
        if preset in OUTPUT_SIZE_PRESETS:
            return OUTPUT_SIZE_PRESETS[preset]
        if preset.isdigit():
            return _validate_optional_size(int(preset), "output_size")
        allowed = ", ".join(OUTPUT_SIZE_PRESETS)
        raise ValueError(f"unknown output size preset {value!r}; expected one of: {allowed}")
    return _validate_optional_size(value, "output_size")


@dataclass(frozen=True, slots=True)
class ProviderModel:
    """Static metadata for one provider/model pairing."""

    provider_id: str
    vendor: str
    model: str
    capabilities: frozenset[Capability]
    cost_score: float = 0.0
    speed_score: float = 0.0
    quality_score: float = 0.0
    max_output_size: int | None = None
    is_async: bool = False
    credential_env: str | None = None
    display_name: str | None = None
    cost_per_call_usd: float = 0.0
    avg_response_seconds: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "provider_id", _validate_non_empty_str(self.provider_id, "provider_id")
        )
        object.__setattr__(self, "vendor", _validate_non_empty_str(self.vendor, "vendor"))
        object.__setattr__(self, "model", _validate_non_empty_str(self.model, "model"))
        if not self.capabilities:
            raise ValueError(f"{self.provider_id}: capabilities cannot be empty")
        object.__setattr__(
            self,
            "capabilities",
            frozenset(Capability(item) for item in self.capabilities),
        )
        for name in (
            "cost_score",
            "speed_score",
            "quality_score",
            "cost_per_call_usd",
            "avg_response_seconds",
        ):
            object.__setattr__(self, name, _validate_score(getattr(self, name), name))
        object.__setattr__(
            self,
            "max_output_size",
            _validate_optional_size(self.max_output_size, "max_output_size"),
        )
        object.__setattr__(self, "is_async", bool(self.is_async))
        object.__setattr__(
            self, "credential_env", _validate_optional_str(self.credential_env, "credential_env")
        )
        object.__setattr__(
            self, "display_name", _validate_optional_str(self.display_name, "display_name")
        )

    @property
    def label(self) -> str:
        return self.display_name or self.provider_id

    def supports(self, capability: Capability | str) -> bool:
        return Capability(capability) in self.capabilities

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "provider_id": self.provider_id,
            "vendor": self.vendor,
            "model": self.model,
            "capabilities": sorted(item.value for item in self.capabilities),
            "cost_score": self.cost_score,
            "speed_score": self.speed_score,
            "quality_score": self.quality_score,
            "max_output_size": self.max_output_size,
            "is_async": self.is_async,
            "credential_env": self.credential_env,
            "display_name": self.display_name,
            "cost_per_call_usd": self.cost_per_call_usd,
            "avg_response_seconds": self.avg_response_seconds,
        }


@dataclass(frozen=True, slots=True)
class CapabilityTier:
    """Ordered fallback list of providers for one capability."""

    capability: Capability
    providers: tuple[ProviderModel, ...]
    pinned_provider_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "capability", Capability(self.capability))
        if not self.providers:
            raise ValueError(f"tier list for {self.capability.value} cannot be empty")
        seen: set[str] = set()
        for entry in self.providers:
            if not entry.supports(self.capability):
                raise ValueError(
                    f"{entry.provider_id} does not declare capability {self.capability.value}"
                )
            if entry.provider_id in seen:
                raise ValueError(f"duplicate provider in tier list: {entry.provider_id}")
            seen.add(entry.provider_id)

    def __len__(self) -> int:
        return len(self.providers)

    def __iter__(self) -> Iterator[ProviderModel]:
        return iter(self.providers)

    def __getitem__(self, index: int) -> ProviderModel:
        return self.providers[index]

    @property
    def provider_ids(self) -> tuple[str, ...]:
        return tuple(entry.provider_id for entry in self.providers)

    def index_of(self, provider_id: str) -> int | None:
        for index, entry in enumerate(self.providers):
            if entry.provider_id == provider_id:
                return index
        return None

    def with_pinned(self, model: ProviderModel) -> CapabilityTier:
        """Return a copy with ``model`` moved (or inserted) at tier 0."""

        rest = tuple(entry for entry in self.providers if entry.provider_id != model.provider_id)
        return CapabilityTier(
            capability=self.capability,
            providers=(model, *rest),
            pinned_provider_id=model.provider_id,
        )


@dataclass(frozen=True, slots=True)
class Downgrade:
    """One request parameter lowered to fit a provider's declared limit."""

    parameter: str
    requested: int
    applied: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {"parameter": self.parameter, "requested": self.requested, "applied": self.applied}


@dataclass(frozen=True, slots=True)
class ArtifactRequest:
    """Provider-agnostic request for one capability invocation."""

    prompt: str | None = None
    inputs: Mapping[str, str] = field(default_factory=dict)
    output_size: int | None = None
    options: Mapping[str, JSONValue] = field(default_factory=dict)
    idempotency_key: str | None = None

    def __post_init__(self) -> None:
        if self.prompt is not None and not isinstance(self.prompt, str):
            raise TypeError("ArtifactRequest.prompt must be a string")
        normalized_inputs: dict[str, str] = {}
        for key, value in self.inputs.items():
            if not isinstance(value, str):
                raise TypeError(f"ArtifactRequest.inputs[{key!r}] must be a string")
            normalized_inputs[_validate_non_empty_str(key, "ArtifactRequest.inputs key")] = value
        object.__setattr__(self, "inputs", normalized_inputs)
        object.__setattr__(
            self,
            "output_size",
            _validate_optional_size(self.output_size, "ArtifactRequest.output_size"),
        )
        object.__setattr__(
            self,
            "options",
            coerce_json_mapping(dict(self.options), path="ArtifactRequest.options"),
        )
        object.__setattr__(
            self,
            "idempotency_key",
            _validate_optional_str(self.idempotency_key, "ArtifactRequest.idempotency_key"),
        )

    def with_output_size(self, output_size: int) -> ArtifactRequest:
        return dataclasses.replace(self, output_size=output_size)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "prompt": self.prompt,
            "inputs": dict(self.inputs),
            "output_size": self.output_size,
            "options": dict(self.options),
            "idempotency_key": self.idempotency_key,
        }


@dataclass(frozen=True, slots=True)
class Artifact:
    """Generic result of a capability invocation."""

    capability: Capability
    provider_id: str
    model: str
    uri: str | None = None
    content: str | None = None
    media_type: str = "image/png"
    output_size: int | None = None
    target_layer: str | None = None
    metadata: Mapping[str, JSONValue] = field(default_factory=dict)
    artifact_id: str = field(default_factory=ids.generate_artifact_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "capability", Capability(self.capability))
        object.__setattr__(
            self, "provider_id", _validate_non_empty_str(self.provider_id, "Artifact.provider_id")
        )
        object.__setattr__(self, "model", _validate_non_empty_str(self.model, "Artifact.model"))
        if self.uri is None and self.content is None:
            raise ValueError("Artifact requires a uri or inline content")
        object.__setattr__(
            self, "media_type", _validate_non_empty_str(self.media_type, "Artifact.media_type")
        )
        object.__setattr__(
            self, "output_size", _validate_optional_size(self.output_size, "Artifact.output_size")
        )
        object.__setattr__(
            self, "target_layer", _validate_optional_str(self.target_layer, "Artifact.target_layer")
        )
        object.__setattr__(
            self,
            "metadata",
            coerce_json_mapping(dict(self.metadata), path="Artifact.metadata"),
        )

    def for_layer(self, layer: str) -> Artifact:
        return dataclasses.replace(self, target_layer=layer)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "artifact_id": self.artifact_id,
            "capability": self.capability.value,
            "provider_id": self.provider_id,
            "model": self.model,
            "uri": self.uri,
            "has_content": self.content is not None,
            "media_type": self.media_type,
            "output_size": self.output_size,
            "target_layer": self.target_layer,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """Outcome of invoking one tier during a single orchestration run."""

    tier_index: int
    provider_id: str
    outcome: AttemptOutcome
    failure: FailureClass | None
    latency_ms: int
    started_at: datetime
    detail: str | None = None
    downgrades: tuple[Downgrade, ...] = ()
    retries: int = 0

    def __post_init__(self) -> None:
        if self.tier_index < 0:
            raise ValueError("AttemptRecord.tier_index must be >= 0")
        if self.latency_ms < 0:
            raise ValueError("AttemptRecord.latency_ms must be >= 0")
        if self.retries < 0:
            raise ValueError("AttemptRecord.retries must be >= 0")
        if self.outcome is AttemptOutcome.SUCCESS and self.failure is not None:
            raise ValueError("successful attempts cannot carry a failure class")
        if self.outcome is AttemptOutcome.FAILURE and self.failure is None:
            raise ValueError("failed attempts must carry a failure class")
        if self.started_at.tzinfo is None:
            raise ValueError("AttemptRecord.started_at must be timezone-aware")

    @property
    def downgraded(self) -> bool:
        return bool(self.downgrades)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tier_index": self.tier_index,
            "provider_id": self.provider_id,
            "outcome": self.outcome.value,
            "failure": None if self.failure is None else self.failure.value,
            "latency_ms": self.latency_ms,
            "started_at": self.started_at.astimezone(UTC).isoformat().replace("+00:00", "Z"),
            "detail": self.detail,
            "downgrades": [item.to_dict() for item in self.downgrades],
            "retries": self.retries,
        }


@dataclass(frozen=True, slots=True)
class SkippedTier:
    tier_index: int
    provider_id: str
    reason: SkipReason

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tier_index": self.tier_index,
            "provider_id": self.provider_id,
            "reason": self.reason.value,
        }


@dataclass(frozen=True, slots=True)
class JobSnapshot:
    """Status report returned by an async provider's ``poll``."""

    status: JobStatus
    progress: int | None = None
    artifact: Artifact | None = None
    failure: FailureClass | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", JobStatus(self.status))
        if self.progress is not None and not 0 <= self.progress <= 100:
            raise ValueError("JobSnapshot.progress must be within 0..100")
        if self.status is JobStatus.SUCCEEDED and self.artifact is None:
            raise ValueError("succeeded snapshots must carry an artifact")


@dataclass(frozen=True, slots=True)
class JobProgress:
    """Progress notification delivered to poller callbacks."""

    job_id: str
    provider_id: str
    status: JobStatus
    percent: int


@dataclass(slots=True)
class JobHandle:
    """Poller-owned view of one submitted job. Mutated only by ``JobPoller``."""

    job_id: str
    provider_id: str
    provider: AsyncJobProvider = field(repr=False, compare=False)
    submitted_at: float
    status: JobStatus = JobStatus.SUBMITTED
    progress: int = 0
    result: Artifact | None = None
    error: Exception | None = None
    polls: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


__all__ = [
    "DEFAULT_OUTPUT_PRESET",
    "OUTPUT_SIZE_PRESETS",
    "Artifact",
    "ArtifactRequest",
    "AttemptOutcome",
    "AttemptRecord",
    "Capability",
    "CapabilityTier",
    "Downgrade",
    "FailureClass",
    "FailureDisposition",
    "JSONScalar",
    "JSONValue",
    "JobHandle",
    "JobProgress",
    "JobSnapshot",
    "JobStatus",
    "ProviderModel",
    "SkipReason",
    "SkippedTier",
    "coerce_json_mapping",
    "resolve_output_size",
]
