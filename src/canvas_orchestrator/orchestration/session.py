"""Per-session orchestration state: pins, remembered tiers, quota suppression."""

from __future__ import annotations

from dataclasses import dataclass, field

from canvas_orchestrator.domain import ids
from canvas_orchestrator.domain.models import Capability


@dataclass(slots=True)
class Session:
    """Mutable state scoped to one user session and passed by reference.

    Nothing here is process-global; two sessions never observe each other's
    pins, remembered tiers or suppressed providers.
    """

    session_id: str = field(default_factory=ids.generate_session_id)
    pinned: dict[Capability, str] = field(default_factory=dict)
    remembered: dict[Capability, str] = field(default_factory=dict)
    suppressed: set[str] = field(default_factory=set)
    runs_since_probe: dict[Capability, int] = field(default_factory=dict)

    def pin(self, capability: Capability | str, provider_id: str) -> None:
        self.pinned[Capability(capability)] = provider_id

    def unpin(self, capability: Capability | str) -> None:
        self.pinned.pop(Capability(capability), None)

    def clear_pins(self) -> None:
        self.pinned.clear()

    def remember_success(self, capability: Capability | str, provider_id: str) -> None:
        self.remembered[Capability(capability)] = provider_id

    def remembered_provider(self, capability: Capability | str) -> str | None:
        return self.remembered.get(Capability(capability))

    def forget(self, capability: Capability | str) -> None:
        resolved = Capability(capability)
        self.remembered.pop(resolved, None)
        self.runs_since_probe.pop(resolved, None)

    def suppress(self, provider_id: str) -> None:
        """Exclude ``provider_id`` from every capability until ``reset``."""

        self.suppressed.add(provider_id)

    def is_suppressed(self, provider_id: str) -> bool:
        return provider_id in self.suppressed

    def should_probe(self, capability: Capability | str, interval: int) -> bool:
        """Count one run for ``capability`` and report whether it should start at tier 0.

        Returns ``True`` on every ``interval``-th run after a tier was remembered,
        so a recovered top tier is rediscovered. An ``interval`` of 0 never probes.
        """

        resolved = Capability(capability)
        if resolved not in self.remembered:
            return True
        count = self.runs_since_probe.get(resolved, 0) + 1
        if interval > 0 and count >= interval:
            self.runs_since_probe[resolved] = 0
            return True
        self.runs_since_probe[resolved] = count
        return False

    def reset(self) -> None:
        """Forget remembered tiers, quota suppressions and probe counters. Pins survive."""

        self.remembered.clear()
        self.suppressed.clear()
        self.runs_since_probe.clear()


__all__ = ["Session"]
