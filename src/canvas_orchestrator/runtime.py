"""Wire a validated config into a registry, poller, orchestrator and executor."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from canvas_orchestrator.actions.canvas import CanvasStore
from canvas_orchestrator.actions.executor import ActionExecutor, PendingPolicy
from canvas_orchestrator.config.schema import DEFAULT_CONFIG
from canvas_orchestrator.observability.events import EventBus
from canvas_orchestrator.orchestration.fallback import FallbackOrchestrator, ProviderAdapter
from canvas_orchestrator.orchestration.poller import JobPoller, PollPolicy
from canvas_orchestrator.orchestration.session import Session
from canvas_orchestrator.providers.base import BackoffConfig, CredentialResolver
from canvas_orchestrator.providers.registry import ProviderRegistry, load_registry


@dataclass(slots=True)
class CanvasRuntime:
    """Long-lived collaborators for one process, plus the active session."""

    config: Mapping[str, object]
    registry: ProviderRegistry
    event_bus: EventBus
    poller: JobPoller
    orchestrator: FallbackOrchestrator
    session: Session = field(default_factory=Session)
    logger: Any | None = None

    def action_executor(self, canvas: CanvasStore) -> ActionExecutor:
        actions = _section(self.config, "actions")
        return ActionExecutor(
            self.orchestrator,
            canvas,
            session=self.session,
            policy=PendingPolicy(str(actions["pending_policy"])),
            max_queue=_int(actions["max_queue"]),
            require_approval=bool(actions["require_approval"]),
            event_bus=self.event_bus,
            logger=self.logger,
        )


def poll_policy_from_config(config: Mapping[str, object]) -> PollPolicy:
    poller = _section(config, "poller")
    return PollPolicy(
        initial_interval_seconds=_float(poller["initial_interval_seconds"]),
        max_interval_seconds=_float(poller["max_interval_seconds"]),
        backoff_multiplier=_float(poller["backoff_multiplier"]),
        timeout_seconds=_float(poller["timeout_seconds"]),
        poll_retries=_int(poller["poll_retries"]),
        poll_retry_delay_seconds=_float(poller["poll_retry_delay_seconds"]),
        cancel_ack_timeout_seconds=_float(poller["cancel_ack_timeout_seconds"]),
    )


def backoff_from_config(config: Mapping[str, object]) -> BackoffConfig:
    fallback = _section(config, "fallback")
    return BackoffConfig(
        max_retries=_int(fallback["max_same_tier_retries"]),
        initial_delay_seconds=_float(fallback["retry_initial_delay_seconds"]),
        max_delay_seconds=_float(fallback["retry_max_delay_seconds"]),
    )


def registry_from_config(config: Mapping[str, object]) -> ProviderRegistry:
    catalog_path = _section(config, "registry").get("catalog_path")
    return load_registry(catalog_path if isinstance(catalog_path, str) else None)


def build_runtime(
    config: Mapping[str, object],
    adapters: Mapping[str, ProviderAdapter],
    *,
    credentials: CredentialResolver | None = None,
    session: Session | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: Any | None = None,
) -> CanvasRuntime:
    """Build every core collaborator from ``config`` (as returned by ``load_config``)."""

    observability = _section(config, "observability")
    fallback = _section(config, "fallback")

    registry = registry_from_config(config)
    event_bus = EventBus(buffer_size=_int(observability["event_buffer_size"]))
    poller = JobPoller(
        poll_policy_from_config(config),
        clock=clock,
        sleep=sleep,
        event_bus=event_bus,
        logger=logger,
    )
    orchestrator = FallbackOrchestrator(
        registry,
        adapters,
        poller=poller,
        credentials=credentials,
        retry_backoff=backoff_from_config(config),
        probe_interval_runs=_int(fallback["probe_interval_runs"]),
        batch_concurrency=_int(fallback["batch_concurrency"]),
        clock=clock,
        sleep=sleep,
        event_bus=event_bus,
        logger=logger,
    )
    return CanvasRuntime(
        config=config,
        registry=registry,
        event_bus=event_bus,
        poller=poller,
        orchestrator=orchestrator,
        session=session if session is not None else Session(),
        logger=logger,
    )


def _section(config: Mapping[str, object], key: str) -> Mapping[str, object]:
    raw = config.get(key)
    if isinstance(raw, Mapping):
        return raw
    default = DEFAULT_CONFIG[key]  # type: ignore[literal-required]
    return default


def _int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected integer config value, got {type(value).__name__}")
    return value


def _float(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected numeric config value, got {type(value).__name__}")
    return float(value)


__all__ = [
    "CanvasRuntime",
    "backoff_from_config",
    "build_runtime",
    "poll_policy_from_config",
    "registry_from_config",
]
