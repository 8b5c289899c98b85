from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml

from canvas_orchestrator.actions.executor import PendingPolicy
from canvas_orchestrator.config.schema import default_config, merge_config
from canvas_orchestrator.orchestration.session import Session
from canvas_orchestrator.providers.registry import load_registry
from canvas_orchestrator.runtime import (
    backoff_from_config,
    build_runtime,
    poll_policy_from_config,
    registry_from_config,
)


def _config(**sections: dict[str, object]) -> dict[str, Any]:
    return merge_config(default_config(), sections)


def test_poll_policy_reads_poller_section() -> None:
    policy = poll_policy_from_config(
        _config(poller={"timeout_seconds": 60.0, "poll_retries": 1, "max_interval_seconds": 4})
    )

    assert policy.timeout_seconds == 60.0
    assert policy.poll_retries == 1
    assert policy.max_interval_seconds == 4.0
    assert policy.initial_interval_seconds == 1.0


def test_backoff_reads_fallback_section() -> None:
    backoff = backoff_from_config(
        _config(fallback={"max_same_tier_retries": 0, "retry_initial_delay_seconds": 0.25})
    )

    assert backoff.max_retries == 0
    assert backoff.initial_delay_seconds == 0.25
    assert backoff.max_delay_seconds == 8.0


def test_missing_sections_fall_back_to_defaults() -> None:
    assert poll_policy_from_config({}).timeout_seconds == 300.0
    assert backoff_from_config({}).max_retries == 2


@pytest.mark.parametrize("value", [True, "3", 2.5])
def test_integer_fields_reject_other_types(value: object) -> None:
    with pytest.raises(TypeError, match="integer"):
        poll_policy_from_config(_config(poller={"poll_retries": value}))


def test_registry_defaults_to_bundled_catalog() -> None:
    assert registry_from_config(default_config()) is load_registry()


def test_registry_loads_configured_catalog(
    tmp_path: Path, catalog_payload: dict[str, Any]
) -> None:
    catalog = tmp_path / "providers.yaml"
    catalog.write_text(yaml.safe_dump(catalog_payload), encoding="utf-8")

    registry = registry_from_config(_config(registry={"catalog_path": catalog.as_posix()}))

    assert registry.version == "test-1"
    assert registry.tiers_for("upscale").provider_ids == ("beta/async", "gamma/fast")


def test_build_runtime_wires_every_collaborator(canvas: Any) -> None:
    session = Session()
    config = _config(
        actions={"pending_policy": "queue", "max_queue": 2, "require_approval": False},
        observability={"event_buffer_size": 16},
        poller={"timeout_seconds": 45.0},
    )

    runtime = build_runtime(config, {}, session=session)
    executor = runtime.action_executor(canvas)

    assert runtime.session is session
    assert runtime.registry is load_registry()
    assert runtime.orchestrator.registry is runtime.registry
    assert runtime.poller.policy.timeout_seconds == 45.0
    assert executor.policy is PendingPolicy.QUEUE
    assert executor.is_idle


def test_build_runtime_creates_a_fresh_session_per_runtime() -> None:
    first = build_runtime(default_config(), {})
    second = build_runtime(default_config(), {})

    assert first.session.session_id != second.session.session_id
    assert first.event_bus is not second.event_bus
