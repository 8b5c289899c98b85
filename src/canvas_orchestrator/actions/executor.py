"""
canvas-orchestrator — action execution state machine.

File: src/canvas_orchestrator/actions/executor.py
Last updated: 2026-10-19

Purpose
- Turn a validated tool call into a previewed, user-approved, reversible canvas mutation.

What should be included in this file
- Explicit action states and the legal transitions between them.
- Single-writer discipline: at most one action executing or awaiting approval.
- Configurable handling of tool calls that arrive while one is outstanding.
- Approve, reject, cancel and revert transitions.

Functional requirements
- With approval required, ``approve`` is the only transition that calls
  ``CanvasStore.apply_result``. Auto-apply failures settle the action as ``failed``.
- ``reject`` never touches the canvas.
- Cancelling while executing cancels the underlying provider call or job.
- Cancelling while awaiting approval is equivalent to ``reject``.

Non-functional requirements
- Transitions are plain method calls so tests can drive the machine step by step.
- Every transition emits a structured event.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

import structlog

from canvas_orchestrator.actions.canvas import CanvasStore
from canvas_orchestrator.actions.schemas import ToolCall
from canvas_orchestrator.domain.events import EventType
from canvas_orchestrator.domain.ids import generate_action_id
from canvas_orchestrator.domain.models import Artifact, JobProgress, JSONValue
from canvas_orchestrator.observability.logging import correlation_scope
from canvas_orchestrator.orchestration.fallback import (
    FallbackOrchestrator,
    OrchestrationError,
    OrchestrationResult,
)
from canvas_orchestrator.utils.concurrency import CancellationToken

if TYPE_CHECKING:
    from canvas_orchestrator.observability.events import EventBus
    from canvas_orchestrator.orchestration.session import Session


class PendingPolicy(StrEnum):
    """What ``submit`` does while another action is outstanding."""

    REJECT = "reject"
    QUEUE = "queue"


class ActionState(StrEnum):
    QUEUED = "queued"
    EXECUTING = "executing"
    AWAITING_APPROVAL = "awaiting_approval"
    APPLIED = "applied"
    DISCARDED = "discarded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REVERTED = "reverted"

    @property
    def is_outstanding(self) -> bool:
        return self in (ActionState.EXECUTING, ActionState.AWAITING_APPROVAL)

    @property
    def is_settled(self) -> bool:
        return self not in (ActionState.QUEUED, ActionState.EXECUTING)


_TRANSITIONS: Final[Mapping[ActionState, frozenset[ActionState]]] = {
    ActionState.QUEUED: frozenset({ActionState.EXECUTING, ActionState.CANCELLED}),
    ActionState.EXECUTING: frozenset(
        {
            ActionState.AWAITING_APPROVAL,
            ActionState.APPLIED,
            ActionState.FAILED,
            ActionState.CANCELLED,
        }
    ),
    ActionState.AWAITING_APPROVAL: frozenset({ActionState.APPLIED, ActionState.DISCARDED}),
    ActionState.APPLIED: frozenset({ActionState.REVERTED}),
    ActionState.DISCARDED: frozenset(),
    ActionState.FAILED: frozenset(),
    ActionState.CANCELLED: frozenset(),
    ActionState.REVERTED: frozenset(),
}

_STATE_EVENTS: Final[Mapping[ActionState, EventType]] = {
    ActionState.QUEUED: EventType.ACTION_QUEUED,
    ActionState.EXECUTING: EventType.ACTION_EXECUTING,
    ActionState.AWAITING_APPROVAL: EventType.ACTION_AWAITING_APPROVAL,
    ActionState.APPLIED: EventType.ACTION_APPLIED,
    ActionState.DISCARDED: EventType.ACTION_DISCARDED,
    ActionState.FAILED: EventType.ACTION_FAILED,
    ActionState.CANCELLED: EventType.ACTION_CANCELLED,
    ActionState.REVERTED: EventType.ACTION_REVERTED,
}


class ActionError(RuntimeError):
    """Base class for action executor misuse."""


class ActionAlreadyPending(ActionError):
    """A tool call arrived while another action is outstanding and could not be queued."""

    def __init__(self, pending: PendingAction, *, policy: PendingPolicy, tool: str) -> None:
        self.pending_action_id = pending.action_id
        self.pending_state = pending.state
        self.policy = policy
        self.tool = tool
        super().__init__(
            f"{tool} refused: action {pending.action_id} is {pending.state.value} "
            f"(policy={policy.value})"
        )


class NoPendingAction(ActionError):
    """No action is in the state the requested transition needs."""


class InvalidTransition(ActionError):
    def __init__(self, action_id: str, current: ActionState, target: ActionState) -> None:
        self.action_id = action_id
        self.current = current
        self.target = target
        super().__init__(f"action {action_id} cannot move from {current.value} to {target.value}")


@dataclass(slots=True, eq=False)
class PendingAction:
    """One tool call moving through the approval state machine."""

    tool_call: ToolCall
    action_id: str = field(default_factory=generate_action_id)
    state: ActionState = ActionState.QUEUED
    preview: Artifact | None = None
    result: OrchestrationResult | None = None
    error: BaseException | None = None
    progress: int = 0
    history: list[ActionState] = field(default_factory=list)
    _settled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _cancel_token: CancellationToken = field(default_factory=CancellationToken, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def is_outstanding(self) -> bool:
        return self.state.is_outstanding

    @property
    def user_message(self) -> str | None:
        if self.error is None:
            return None
        if isinstance(self.error, OrchestrationError):
            return self.error.user_message
        return str(self.error) or type(self.error).__name__

    @property
    def provenance_note(self) -> str | None:
        return None if self.result is None else self.result.provenance_note

    async def wait_settled(self) -> PendingAction:
        """Return once the action has left ``queued``/``executing``."""

        await self._settled.wait()
        return self

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "action_id": self.action_id,
            "state": self.state.value,
            "tool_call": self.tool_call.to_dict(),
            "progress": self.progress,
            "preview": None if self.preview is None else self.preview.to_dict(),
            "provenance_note": self.provenance_note,
            "error": self.user_message,
            "history": [item.value for item in self.history],
        }


class ActionExecutor:
    """Single-writer gate between agent tool calls and the shared canvas."""

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        canvas: CanvasStore,
        *,
        session: Session,
        policy: PendingPolicy | str = PendingPolicy.REJECT,
        max_queue: int = 8,
        require_approval: bool = True,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
    ) -> None:
        if max_queue < 0:
            raise ValueError("max_queue must be >= 0")
        self._orchestrator = orchestrator
        self._canvas = canvas
        self._session = session
        self._policy = PendingPolicy(policy)
        self._max_queue = max_queue
        self._require_approval = require_approval
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._current: PendingAction | None = None
        self._queue: deque[PendingAction] = deque()
        self._applied: list[PendingAction] = []

    @property
    def policy(self) -> PendingPolicy:
        return self._policy

    @property
    def current(self) -> PendingAction | None:
        return self._current

    @property
    def queued(self) -> tuple[PendingAction, ...]:
        return tuple(self._queue)

    @property
    def is_idle(self) -> bool:
        return self._current is None

    @property
    def last_applied(self) -> PendingAction | None:
        return self._applied[-1] if self._applied else None

    async def submit(self, tool_call: ToolCall) -> PendingAction:
        """Start ``tool_call`` now, queue it, or raise ``ActionAlreadyPending``."""

        action = PendingAction(tool_call=tool_call)
        outstanding = self._current
        if outstanding is not None:
            if self._policy is PendingPolicy.REJECT or len(self._queue) >= self._max_queue:
                self._logger.info(
                    "action_refused",
                    tool=tool_call.name.value,
                    pending_action_id=outstanding.action_id,
                    pending_state=outstanding.state.value,
                    policy=self._policy.value,
                    queue_depth=len(self._queue),
                )
                raise ActionAlreadyPending(
                    outstanding, policy=self._policy, tool=tool_call.name.value
                )
            self._queue.append(action)
            action.history.append(ActionState.QUEUED)
            self._announce(action, queue_position=len(self._queue))
            return action

        self._start(action)
        return action

    def approve(self, action: PendingAction | None = None) -> PendingAction:
        """Commit the previewed artifact to the canvas.

        Starting the next queued action needs a running event loop.
        """

        target = self._require_awaiting(action)
        preview = target.preview
        if preview is None:
            raise NoPendingAction(f"action {target.action_id} has no preview to apply")
        self._canvas.apply_result(preview)
        self._transition(target, ActionState.APPLIED)
        self._applied.append(target)
        self._release(target)
        return target

    def reject(self, action: PendingAction | None = None) -> PendingAction:
        """Drop the previewed artifact without touching the canvas.

        Starting the next queued action needs a running event loop.
        """

        target = self._require_awaiting(action)
        target.preview = None
        self._transition(target, ActionState.DISCARDED)
        self._release(target)
        return target

    async def cancel(self, action: PendingAction | None = None) -> PendingAction:
        """Cancel a queued, executing or awaiting action.

        Executing actions cancel their provider call or job and return once it has
        stopped. Awaiting actions are rejected.
        """

        target = action if action is not None else self._current
        if target is None:
            raise NoPendingAction("no action to cancel")

        if target.state is ActionState.QUEUED:
            self._queue.remove(target)
            self._transition(target, ActionState.CANCELLED)
            return target
        if target.state is ActionState.AWAITING_APPROVAL:
            return self.reject(target)
        if target.state is not ActionState.EXECUTING:
            raise InvalidTransition(target.action_id, target.state, ActionState.CANCELLED)

        target._cancel_token.cancel("cancelled by user")
        if target._task is not None:
            await asyncio.gather(target._task, return_exceptions=True)
        return target

    def revert(self) -> PendingAction:
        """Undo the most recently applied action via ``CanvasStore.discard``."""

        if not self._applied:
            raise NoPendingAction("no applied action to revert")
        target = self._applied[-1]
        self._canvas.discard()
        self._applied.pop()
        self._transition(target, ActionState.REVERTED)
        return target

    async def shutdown(self) -> None:
        """Cancel everything queued, then the outstanding action."""

        while self._queue:
            queued = self._queue.pop()
            self._transition(queued, ActionState.CANCELLED)
        current = self._current
        if current is not None and current.state is not ActionState.AWAITING_APPROVAL:
            await self.cancel(current)
        elif current is not None:
            self.reject(current)

    def _start(self, action: PendingAction) -> None:
        self._current = action
        self._transition(action, ActionState.EXECUTING)
        action._task = asyncio.create_task(
            self._execute(action), name=f"canvas-action-{action.action_id}"
        )

    async def _execute(self, action: PendingAction) -> None:
        tool_call = action.tool_call

        def on_progress(progress: JobProgress) -> None:
            action.progress = max(action.progress, progress.percent)

        with correlation_scope(session_id=self._session.session_id, action_id=action.action_id):
            try:
                result = await self._orchestrator.run(
                    tool_call.capability,
                    tool_call.to_request(),
                    session=self._session,
                    cancel_token=action._cancel_token,
                    on_progress=on_progress,
                    prefer=tool_call.preferred_provider,
                )
            except asyncio.CancelledError:
                self._transition(action, ActionState.CANCELLED)
                self._release(action)
                if not action._cancel_token.is_cancelled:
                    raise
                return
            except OrchestrationError as exc:
                self._fail(action, exc)
                return
            except Exception as exc:  # noqa: BLE001
                self._logger.exception(
                    "action_crashed",
                    action_id=action.action_id,
                    tool=tool_call.name.value,
                )
                self._fail(action, exc)
                return

        action.result = result
        action.preview = result.artifact.for_layer(tool_call.target_layer)
        action.progress = 100
        if self._require_approval:
            self._transition(action, ActionState.AWAITING_APPROVAL)
            return

        try:
            self._canvas.apply_result(action.preview)
        except Exception as exc:  # noqa: BLE001
            self._logger.exception(
                "canvas_apply_failed",
                action_id=action.action_id,
                tool=tool_call.name.value,
            )
            self._fail(action, exc)
            return
        self._transition(action, ActionState.APPLIED)
        self._applied.append(action)
        self._release(action)

    def _fail(self, action: PendingAction, error: BaseException) -> None:
        action.error = error
        self._transition(action, ActionState.FAILED)
        self._release(action)

    def _release(self, action: PendingAction) -> None:
        if self._current is not action:
            return
        self._current = None
        while self._queue:
            following = self._queue.popleft()
            if following.state is ActionState.QUEUED:
                self._start(following)
                return

    def _require_awaiting(self, action: PendingAction | None) -> PendingAction:
        target = action if action is not None else self._current
        if target is None or target.state is not ActionState.AWAITING_APPROVAL:
            raise NoPendingAction("no action is awaiting approval")
        if self._queue:
            # Raises before any state changes when called outside a running loop.
            asyncio.get_running_loop()
        return target

    def _transition(self, action: PendingAction, state: ActionState) -> None:
        if state not in _TRANSITIONS[action.state]:
            raise InvalidTransition(action.action_id, action.state, state)
        previous = action.state
        action.state = state
        action.history.append(state)
        if state.is_settled:
            action._settled.set()
        self._logger.info(
            "action_transition",
            action_id=action.action_id,
            tool=action.tool_call.name.value,
            previous=previous.value,
            state=state.value,
        )
        self._announce(action)

    def _announce(self, action: PendingAction, **extra: object) -> None:
        if self._event_bus is None:
            return
        tool_call = action.tool_call
        payload: dict[str, object] = {
            "action_id": action.action_id,
            "tool": tool_call.name.value,
            "source": tool_call.source.value,
            "state": action.state.value,
            "capability": tool_call.capability.value,
            "session_id": self._session.session_id,
        }
        if action.result is not None:
            payload["provider_id"] = action.result.provider_id
            payload["tier_index"] = action.result.tier_index
        if action.error is not None:
            payload["error"] = action.user_message
        payload.update(extra)
        self._event_bus.emit(
            _STATE_EVENTS[action.state], payload, correlation_id=action.action_id
        )


__all__ = [
    "ActionAlreadyPending",
    "ActionError",
    "ActionExecutor",
    "ActionState",
    "InvalidTransition",
    "NoPendingAction",
    "PendingAction",
    "PendingPolicy",
]
