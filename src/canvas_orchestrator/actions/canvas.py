"""Contract for the shared canvas that approved actions mutate."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from canvas_orchestrator.domain.models import Artifact


@runtime_checkable
class CanvasStore(Protocol):
    """Owner of shared canvas state.

    The action executor is the only writer. ``apply_result`` commits an approved
    artifact to ``artifact.target_layer``; ``discard`` undoes the most recent apply.
    """

    def apply_result(self, artifact: Artifact) -> None: ...

    def discard(self) -> None: ...


__all__ = ["CanvasStore"]
