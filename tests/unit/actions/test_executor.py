"""
canvas-orchestrator — unit tests for the action execution state machine

File: tests/unit/actions/test_executor.py
Last updated: 2026-10-19

Purpose
- Drive the executor transition by transition against scripted providers and a
  recording canvas.

What this test file should cover
- Approval is the only path onto the canvas; rejection never touches it.
- Pending-action policies (reject, bounded queue).
- Cancellation while queued, executing and awaiting approval.
- Revert, auto-apply, failures and emitted events.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from canvas_orchestrator.actions.executor import (
    ActionAlreadyPending,
    ActionExecutor,
    ActionState,
    InvalidTransition,
    NoPendingAction,
    PendingPolicy,
)
from canvas_orchestrator.actions.schemas import PROFILE_LAYER, parse_tool_call
from canvas_orchestrator.domain.events import EventType
from canvas_orchestrator.domain.models import JobStatus
from canvas_orchestrator.observability.events import EventBus
from canvas_orchestrator.orchestration.fallback import TerminalFailureError
from canvas_orchestrator.orchestration.poller import PollPolicy
from canvas_orchestrator.orchestration.session import Session
from canvas_orchestrator.providers.base import ContentRejectedError, ProviderServiceError


def _background(prompt: str = "navy gradient with subtle circuit lines") -> Any:
    return parse_tool_call("generate_background", {"prompt": prompt, "style": "minimal"})


def _edit() -> Any:
    return parse_tool_call(
        "magic_edit",
        {"instruction": "make it warmer", "image_url": "https://cdn.example.test/banner.png"},
        source="voice",
    )


def _executor(
    make_orchestrator: Any,
    canvas: Any,
    adapters: dict[str, object],
    **kwargs: Any,
) -> ActionExecutor:
    bus = kwargs.pop("event_bus", None)
    orchestrator_kwargs = {}
    if "poll_policy" in kwargs:
        orchestrator_kwargs["poll_policy"] = kwargs.pop("poll_policy")
    orchestrator = make_orchestrator(adapters, event_bus=bus, **orchestrator_kwargs)
    return ActionExecutor(orchestrator, canvas, session=Session(), event_bus=bus, **kwargs)


@pytest.mark.asyncio
async def test_approve_applies_preview_to_canvas(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()})

    action = await executor.submit(_background())
    assert action.state is ActionState.EXECUTING
    await action.wait_settled()

    assert action.state is ActionState.AWAITING_APPROVAL
    assert action.preview is not None
    assert action.preview.target_layer == "background"
    assert action.progress == 100
    assert canvas.applied == []

    approved = executor.approve()

    assert approved is action
    assert action.state is ActionState.APPLIED
    assert canvas.applied == [action.preview]
    assert executor.is_idle
    assert executor.last_applied is action
    assert action.history == [
        ActionState.EXECUTING,
        ActionState.AWAITING_APPROVAL,
        ActionState.APPLIED,
    ]


@pytest.mark.asyncio
async def test_reject_discards_without_touching_canvas(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()})
    action = await executor.submit(_background())
    await action.wait_settled()

    executor.reject(action)

    assert action.state is ActionState.DISCARDED
    assert action.preview is None
    assert canvas.applied == []
    assert canvas.discards == 0
    assert executor.is_idle


@pytest.mark.asyncio
async def test_reject_policy_refuses_second_tool_call(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()})
    first = await executor.submit(_background())
    await first.wait_settled()

    with pytest.raises(ActionAlreadyPending) as excinfo:
        await executor.submit(_edit())

    assert excinfo.value.pending_action_id == first.action_id
    assert excinfo.value.pending_state is ActionState.AWAITING_APPROVAL
    assert excinfo.value.policy is PendingPolicy.REJECT
    assert executor.current is first


@pytest.mark.asyncio
async def test_queue_policy_starts_next_action_after_settlement(
    make_orchestrator, fakes, canvas
) -> None:
    alpha = fakes.SyncProvider()
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": alpha}, policy="queue")

    first = await executor.submit(_background())
    second = await executor.submit(_edit())

    assert second.state is ActionState.QUEUED
    assert executor.queued == (second,)

    await first.wait_settled()
    executor.approve()
    await second.wait_settled()

    assert second.state is ActionState.AWAITING_APPROVAL
    assert second.history == [
        ActionState.QUEUED,
        ActionState.EXECUTING,
        ActionState.AWAITING_APPROVAL,
    ]
    assert executor.current is second
    assert [call[1].prompt for call in alpha.calls] == [
        "navy gradient with subtle circuit lines",
        "make it warmer",
    ]


@pytest.mark.asyncio
async def test_full_queue_refuses_tool_call(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(
        make_orchestrator,
        canvas,
        {"alpha/pro": fakes.SyncProvider()},
        policy=PendingPolicy.QUEUE,
        max_queue=1,
    )
    await executor.submit(_background())
    await executor.submit(_edit())

    with pytest.raises(ActionAlreadyPending):
        await executor.submit(_background("third"))

    assert len(executor.queued) == 1


@pytest.mark.asyncio
async def test_cancel_executing_sync_call(make_orchestrator, fakes, canvas) -> None:
    alpha = fakes.SyncProvider(hang=True)
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": alpha})
    action = await executor.submit(_background())
    await alpha.started.wait()

    cancelled = await executor.cancel()

    assert cancelled.state is ActionState.CANCELLED
    assert canvas.applied == []
    assert executor.is_idle


@pytest.mark.asyncio
async def test_cancel_executing_job_cancels_it_at_provider(
    make_orchestrator, fakes, canvas
) -> None:
    beta = fakes.JobProvider([(JobStatus.PROCESSING, 20)])
    executor = _executor(
        make_orchestrator,
        canvas,
        {
            "alpha/pro": fakes.SyncProvider(ProviderServiceError("500", provider="alpha")),
            "beta/async": beta,
        },
        poll_policy=PollPolicy(
            initial_interval_seconds=1.0, max_interval_seconds=2.0, timeout_seconds=10_000.0
        ),
    )
    action = await executor.submit(_background())
    while not beta.submitted:
        await asyncio.sleep(0)

    await executor.cancel(action)

    assert action.state is ActionState.CANCELLED
    assert beta.cancelled == ["job-1"]
    assert executor.is_idle


@pytest.mark.asyncio
async def test_cancel_while_awaiting_approval_discards(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()})
    action = await executor.submit(_background())
    await action.wait_settled()

    await executor.cancel()

    assert action.state is ActionState.DISCARDED
    assert canvas.applied == []


@pytest.mark.asyncio
async def test_cancel_queued_action_removes_it(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(
        make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()}, policy="queue"
    )
    first = await executor.submit(_background())
    queued = await executor.submit(_edit())

    await executor.cancel(queued)
    await first.wait_settled()
    executor.approve()

    assert queued.state is ActionState.CANCELLED
    assert executor.queued == ()
    assert executor.is_idle


@pytest.mark.asyncio
async def test_revert_discards_most_recent_apply(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()})
    action = await executor.submit(_background())
    await action.wait_settled()
    executor.approve()

    reverted = executor.revert()

    assert reverted is action
    assert action.state is ActionState.REVERTED
    assert canvas.discards == 1
    assert canvas.applied == []
    with pytest.raises(NoPendingAction):
        executor.revert()


@pytest.mark.asyncio
async def test_auto_apply_skips_approval(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(
        make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()}, require_approval=False
    )

    action = await executor.submit(_background())
    await action.wait_settled()

    assert action.state is ActionState.APPLIED
    assert canvas.applied == [action.preview]
    assert executor.is_idle


class _BrokenCanvas:
    def apply_result(self, artifact: Any) -> None:
        raise RuntimeError("canvas store is read-only")

    def discard(self) -> None:
        raise AssertionError("nothing was applied")


@pytest.mark.asyncio
async def test_auto_apply_canvas_failure_fails_action_and_releases_executor(
    make_orchestrator, fakes
) -> None:
    executor = _executor(
        make_orchestrator,
        _BrokenCanvas(),
        {"alpha/pro": fakes.SyncProvider()},
        require_approval=False,
    )

    action = await executor.submit(_background())
    await asyncio.wait_for(action.wait_settled(), timeout=1.0)

    assert action.state is ActionState.FAILED
    assert isinstance(action.error, RuntimeError)
    assert executor.is_idle
    assert executor.last_applied is None
    follow_up = await executor.submit(_edit())
    await follow_up.wait_settled()
    assert follow_up.state is ActionState.FAILED


def test_approve_outside_event_loop_with_queue_changes_nothing(
    make_orchestrator, fakes, canvas
) -> None:
    executor = _executor(
        make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()}, policy="queue"
    )

    async def prepare() -> tuple[Any, Any]:
        first = await executor.submit(_background())
        second = await executor.submit(_edit())
        await first.wait_settled()
        return first, second

    first, second = asyncio.run(prepare())

    with pytest.raises(RuntimeError):
        executor.approve()

    assert first.state is ActionState.AWAITING_APPROVAL
    assert second.state is ActionState.QUEUED
    assert canvas.applied == []
    assert executor.current is first


@pytest.mark.asyncio
async def test_failed_action_releases_executor(make_orchestrator, fakes, canvas) -> None:
    executor = _executor(
        make_orchestrator,
        canvas,
        {"alpha/pro": fakes.SyncProvider(ContentRejectedError("nsfw", provider="alpha"))},
    )

    action = await executor.submit(_edit())
    await action.wait_settled()

    assert action.state is ActionState.FAILED
    assert isinstance(action.error, TerminalFailureError)
    assert "content policy" in (action.user_message or "")
    assert canvas.applied == []
    assert executor.is_idle
    with pytest.raises(NoPendingAction):
        executor.approve()


@pytest.mark.asyncio
async def test_face_enhancement_targets_profile_layer(make_orchestrator, fakes, canvas) -> None:
    delta = fakes.SyncProvider()
    executor = _executor(make_orchestrator, canvas, {"delta/face": delta})

    action = await executor.submit(
        parse_tool_call("enhance_face", {"image_url": "https://cdn.example.test/me.jpg"})
    )
    await action.wait_settled()
    executor.approve()

    assert canvas.applied[0].target_layer == PROFILE_LAYER
    assert canvas.applied[0].provider_id == "delta/face"
    assert delta.calls[0][1].inputs == {"image": "https://cdn.example.test/me.jpg"}


@pytest.mark.asyncio
async def test_terminal_states_reject_further_transitions(
    make_orchestrator, fakes, canvas
) -> None:
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()})
    action = await executor.submit(_background())
    await action.wait_settled()
    executor.reject()

    with pytest.raises(InvalidTransition):
        await executor.cancel(action)
    with pytest.raises(NoPendingAction):
        await executor.cancel()


@pytest.mark.asyncio
async def test_transitions_emit_events(make_orchestrator, fakes, canvas) -> None:
    bus = EventBus()
    executor = _executor(
        make_orchestrator, canvas, {"alpha/pro": fakes.SyncProvider()}, event_bus=bus
    )

    action = await executor.submit(_edit())
    await action.wait_settled()
    executor.approve()

    events = bus.replay(correlation_id=action.action_id)
    assert [event.event_type for event in events] == [
        EventType.ACTION_EXECUTING,
        EventType.ACTION_AWAITING_APPROVAL,
        EventType.ACTION_APPLIED,
    ]
    assert events[1].payload["provider_id"] == "alpha/pro"
    assert events[1].payload["source"] == "voice"
    assert events[0].payload["tool"] == "magic_edit"


@pytest.mark.asyncio
async def test_shutdown_cancels_queue_and_outstanding_action(
    make_orchestrator, fakes, canvas
) -> None:
    alpha = fakes.SyncProvider(hang=True)
    executor = _executor(make_orchestrator, canvas, {"alpha/pro": alpha}, policy="queue")
    first = await executor.submit(_background())
    queued = await executor.submit(_edit())
    await alpha.started.wait()

    await executor.shutdown()

    assert queued.state is ActionState.CANCELLED
    assert first.state is ActionState.CANCELLED
    assert executor.is_idle
    assert len(alpha.calls) == 1
