"""
canvas-orchestrator — provider registry and capability tier lists.

File: src/canvas_orchestrator/providers/registry.py
Last updated: 2026-10-19

Purpose
- Load and expose the static provider catalog and per-capability fallback order.

What should be included in this file
- YAML-backed loader for provider metadata and tier lists.
- Tier lookup with per-session tier-0 pinning and per-call preference.
- Deterministic cost lookup helpers.

Functional requirements
- ``tiers_for`` fails with ``UnknownCapabilityError`` when no tier list is configured.
- ``override`` pins a provider for the remainder of a session without touching the catalog.

Non-functional requirements
- Read-only after load; safe to share across sessions.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, cast

import yaml

from canvas_orchestrator.constants import CATALOG_FILENAME
from canvas_orchestrator.domain.models import Capability, CapabilityTier, ProviderModel

if TYPE_CHECKING:
    from canvas_orchestrator.orchestration.session import Session

_UNKNOWN_COST_USD = 0.001


class RegistryError(LookupError):
    """Base class for registry lookup failures."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else self.__class__.__name__


class UnknownCapabilityError(RegistryError):
    def __init__(self, capability: object) -> None:
        self.capability = capability
        super().__init__(f"no tier list configured for capability {capability!r}")


class UnknownProviderError(RegistryError):
    def __init__(self, provider_id: str, *, capability: Capability | None = None) -> None:
        self.provider_id = provider_id
        self.capability = capability
        if capability is None:
            message = f"unknown provider {provider_id!r}"
        else:
            message = f"provider {provider_id!r} cannot serve capability {capability.value!r}"
        super().__init__(message)


def _validate_non_empty_str(value: object, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    parsed = value.strip()
    if not parsed:
        raise ValueError(f"{field_name} cannot be empty")
    return parsed


def _as_mapping(value: object, field_name: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise TypeError(f"{field_name} must be an object")
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise TypeError(f"{field_name} keys must be strings")
        out[key] = item
    return out


def _as_sequence(value: object, field_name: str) -> Sequence[object]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    raise TypeError(f"{field_name} must be an array")


def _as_capability(value: object) -> Capability:
    if isinstance(value, Capability):
        return value
    if isinstance(value, str):
        try:
            return Capability(value.strip().lower())
        except ValueError:
            pass
    raise UnknownCapabilityError(value)


def _parse_provider(item: object, index: int) -> ProviderModel:
    path = f"providers[{index}]"
    item_map = _as_mapping(item, path)
    capabilities_raw = _as_sequence(item_map.get("capabilities"), f"{path}.capabilities")
    capabilities: set[Capability] = set()
    for raw in capabilities_raw:
        name = _validate_non_empty_str(raw, f"{path}.capabilities")
        try:
            capabilities.add(Capability(name))
        except ValueError as exc:
            raise ValueError(f"{path}.capabilities: unknown capability {name!r}") from exc

    max_output_size = item_map.get("max_output_size")
    credential_env = item_map.get("credential_env")
    display_name = item_map.get("display_name")
    return ProviderModel(
        provider_id=_validate_non_empty_str(item_map.get("provider_id"), f"{path}.provider_id"),
        vendor=_validate_non_empty_str(item_map.get("vendor"), f"{path}.vendor"),
        model=_validate_non_empty_str(item_map.get("model"), f"{path}.model"),
        capabilities=frozenset(capabilities),
        cost_score=cast("float", item_map.get("cost_score", 0.0)),
        speed_score=cast("float", item_map.get("speed_score", 0.0)),
        quality_score=cast("float", item_map.get("quality_score", 0.0)),
        max_output_size=cast("int | None", max_output_size),
        is_async=bool(item_map.get("is_async", False)),
        credential_env=None
        if credential_env is None
        else _validate_non_empty_str(credential_env, f"{path}.credential_env"),
        display_name=None
        if display_name is None
        else _validate_non_empty_str(display_name, f"{path}.display_name"),
        cost_per_call_usd=cast("float", item_map.get("cost_per_call_usd", 0.0)),
        avg_response_seconds=cast("float", item_map.get("avg_response_seconds", 0.0)),
    )


@dataclass(frozen=True, slots=True)
class ProviderRegistry:
    """Process-wide provider metadata plus ordered tier lists per capability."""

    version: str
    providers: tuple[ProviderModel, ...]
    tiers: Mapping[Capability, CapabilityTier]
    _by_id: Mapping[str, ProviderModel] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "version", _validate_non_empty_str(self.version, "ProviderRegistry.version")
        )
        if not self.providers:
            raise ValueError("ProviderRegistry.providers cannot be empty")

        by_id: dict[str, ProviderModel] = {}
        for entry in self.providers:
            if not isinstance(entry, ProviderModel):
                raise TypeError("ProviderRegistry.providers entries must be ProviderModel")
            if entry.provider_id in by_id:
                raise ValueError(f"duplicate provider_id in catalog: {entry.provider_id!r}")
            by_id[entry.provider_id] = entry

        normalized_tiers: dict[Capability, CapabilityTier] = {}
        for capability_key, tier in self.tiers.items():
            capability = Capability(capability_key)
            if tier.capability is not capability:
                raise ValueError(f"tier list keyed {capability.value!r} declares {tier.capability}")
            for entry in tier:
                if by_id.get(entry.provider_id) != entry:
                    raise ValueError(
                        f"tier {capability.value!r} references unregistered provider "
                        f"{entry.provider_id!r}"
                    )
            normalized_tiers[capability] = tier

        object.__setattr__(self, "tiers", MappingProxyType(normalized_tiers))
        object.__setattr__(self, "_by_id", MappingProxyType(by_id))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> ProviderRegistry:
        if "version" not in payload:
            raise ValueError("version is required")
        version = _validate_non_empty_str(str(payload["version"]), "version")

        providers_raw = _as_sequence(payload.get("providers"), "providers")
        providers = tuple(_parse_provider(item, index) for index, item in enumerate(providers_raw))
        by_id = {entry.provider_id: entry for entry in providers}

        tiers_raw = _as_mapping(payload.get("tiers"), "tiers")
        tiers: dict[Capability, CapabilityTier] = {}
        for capability_raw, provider_ids_raw in tiers_raw.items():
            try:
                capability = Capability(capability_raw)
            except ValueError as exc:
                raise ValueError(f"tiers: unknown capability {capability_raw!r}") from exc
            entries: list[ProviderModel] = []
            for provider_id_raw in _as_sequence(provider_ids_raw, f"tiers.{capability_raw}"):
                provider_id = _validate_non_empty_str(provider_id_raw, f"tiers.{capability_raw}")
                if provider_id not in by_id:
                    raise ValueError(
                        f"tiers.{capability_raw} references unknown provider {provider_id!r}"
                    )
                entries.append(by_id[provider_id])
            tiers[capability] = CapabilityTier(capability=capability, providers=tuple(entries))

        return cls(version=version, providers=providers, tiers=tiers)

    @classmethod
    def from_file(cls, path: str | Path) -> ProviderRegistry:
        candidate = Path(path).expanduser().resolve()
        try:
            with candidate.open("r", encoding="utf-8") as handle:
                loaded = cast("object", yaml.safe_load(handle))
        except yaml.YAMLError as exc:
            raise ValueError(f"invalid provider catalog YAML in {candidate}: {exc}") from exc
        except OSError as exc:
            raise ValueError(f"unable to read provider catalog file {candidate}: {exc}") from exc

        return cls.from_mapping(_as_mapping(loaded, "catalog"))

    def capabilities(self) -> tuple[Capability, ...]:
        return tuple(capability for capability in Capability if capability in self.tiers)

    def get(self, provider_id: str) -> ProviderModel:
        found = self._by_id.get(provider_id)
        if found is None:
            raise UnknownProviderError(provider_id)
        return found

    def providers_with(self, capability: Capability | str) -> tuple[ProviderModel, ...]:
        """All registered providers declaring ``capability``, tiered entries first."""

        resolved = _as_capability(capability)
        tier = self.tiers.get(resolved)
        ordered = list(tier.providers) if tier is not None else []
        ordered.extend(
            entry
            for entry in self.providers
            if entry.supports(resolved) and entry not in ordered
        )
        return tuple(ordered)

    def tiers_for(
        self,
        capability: Capability | str,
        *,
        session: Session | None = None,
        prefer: str | None = None,
    ) -> CapabilityTier:
        """Return the tier list for ``capability``.

        ``prefer`` moves one provider to tier 0 for a single call and wins over a
        session pin; a session pin applies to every call for that capability.
        """

        resolved = _as_capability(capability)
        tier = self.tiers.get(resolved)
        if tier is None:
            raise UnknownCapabilityError(resolved.value)

        preferred = prefer
        if preferred is None and session is not None:
            preferred = session.pinned.get(resolved)
        if preferred is None:
            return tier
        return tier.with_pinned(self._require_capable(preferred, resolved))

    def override(
        self,
        capability: Capability | str,
        preferred_provider_id: str,
        *,
        session: Session,
    ) -> CapabilityTier:
        resolved = _as_capability(capability)
        if resolved not in self.tiers:
            raise UnknownCapabilityError(resolved.value)
        model = self._require_capable(preferred_provider_id, resolved)
        session.pin(resolved, model.provider_id)
        return self.tiers_for(resolved, session=session)

    def estimate_cost(self, capability: Capability | str, provider_id: str | None = None) -> float:
        """Per-call cost of the named provider, or of tier 0 when none is named."""

        resolved = _as_capability(capability)
        if provider_id is not None:
            cost = self._require_capable(provider_id, resolved).cost_per_call_usd
        else:
            cost = self.tiers_for(resolved)[0].cost_per_call_usd
        return cost if cost > 0 else _UNKNOWN_COST_USD

    def _require_capable(self, provider_id: str, capability: Capability) -> ProviderModel:
        model = self.get(provider_id)
        if not model.supports(capability):
            raise UnknownProviderError(provider_id, capability=capability)
        return model


def _bundled_catalog_path() -> Path:
    return Path(__file__).resolve().with_name(CATALOG_FILENAME)


@lru_cache(maxsize=8)
def load_registry(path: str | Path | None = None) -> ProviderRegistry:
    """Load the provider registry from disk with deterministic caching."""

    resolved = _bundled_catalog_path() if path is None else Path(path).expanduser().resolve()
    return ProviderRegistry.from_file(resolved)


__all__ = [
    "ProviderRegistry",
    "RegistryError",
    "UnknownCapabilityError",
    "UnknownProviderError",
    "load_registry",
]
