"""In-process event bus with a bounded replay buffer and a log sink."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Final

from canvas_orchestrator.domain.events import EventType, OrchestratorEvent, redact_sensitive

Subscriber = Callable[[OrchestratorEvent], object]

_ERROR_BUFFER_SIZE: Final[int] = 1024
_EVENT_LOGGER_NAME: Final[str] = "canvas_orchestrator.events"


@dataclass(frozen=True, slots=True)
class DispatchError:
    """A subscriber failure; recorded, never raised to the publisher."""

    event_id: str
    subscriber: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    event_type: EventType | None
    callback: Subscriber


class EventBus:
    """Fan events out to subscribers and keep the latest ``buffer_size`` for replay.

    Subscribers may be plain callables or coroutine functions. Coroutines are
    scheduled on the running loop (``drain()`` awaits them) or run to completion
    when publishing from code with no loop.
    """

    def __init__(self, *, buffer_size: int = 512) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int) or buffer_size <= 0:
            raise ValueError(f"buffer_size must be a positive integer, got {buffer_size!r}")
        self._buffer: deque[OrchestratorEvent] = deque(maxlen=buffer_size)
        self._errors: deque[DispatchError] = deque(maxlen=_ERROR_BUFFER_SIZE)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending: set[asyncio.Task[object]] = set()
        self._next_token = 1
        self._lock = threading.RLock()

    def subscribe(self, event_type: EventType | str | None, callback: Subscriber) -> int:
        if not callable(callback):
            raise ValueError("callback must be callable")
        wanted = None if event_type is None else EventType(event_type)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(wanted, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def emit(
        self,
        event_type: EventType | str,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
    ) -> OrchestratorEvent:
        event = OrchestratorEvent(
            event_type=EventType(event_type),
            payload=dict(payload),
            correlation_id=correlation_id,
        )
        self.publish(event)
        return event

    def publish(self, event: OrchestratorEvent) -> tuple[DispatchError, ...]:
        with self._lock:
            self._buffer.append(event)
            targets = [
                sub.callback
                for sub in self._subscriptions.values()
                if sub.event_type is None or sub.event_type is event.event_type
            ]

        errors = [
            error for error in (self._deliver(callback, event) for callback in targets) if error
        ]
        if errors:
            with self._lock:
                self._errors.extend(errors)
        return tuple(errors)

    async def drain(self) -> None:
        """Wait for coroutine subscribers scheduled by ``publish``."""

        while True:
            with self._lock:
                pending = tuple(self._pending)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def replay(
        self,
        *,
        event_type: EventType | str | None = None,
        correlation_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[OrchestratorEvent, ...]:
        """Buffered events in publish order, optionally filtered; ``limit`` keeps the newest."""

        wanted = None if event_type is None else EventType(event_type)
        with self._lock:
            events = [
                event
                for event in self._buffer
                if (wanted is None or event.event_type is wanted)
                and (correlation_id is None or event.correlation_id == correlation_id)
            ]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return tuple(events)

    @property
    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._errors)

    def _deliver(self, callback: Subscriber, event: OrchestratorEvent) -> DispatchError | None:
        name = _subscriber_name(callback)
        try:
            result = callback(event)
            if inspect.iscoroutine(result):
                self._schedule(result, name, event)
        except Exception as exc:  # noqa: BLE001
            return DispatchError(event.event_id, name, type(exc).__name__, str(exc))
        return None

    def _schedule(self, coroutine: object, name: str, event: OrchestratorEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coroutine)  # type: ignore[arg-type]
            return

        task = loop.create_task(coroutine)  # type: ignore[arg-type]
        with self._lock:
            self._pending.add(task)

        def _done(finished: asyncio.Task[object]) -> None:
            with self._lock:
                self._pending.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if isinstance(exc, Exception):
                with self._lock:
                    self._errors.append(
                        DispatchError(event.event_id, name, type(exc).__name__, str(exc))
                    )

        task.add_done_callback(_done)


def log_sink(logger: logging.Logger | None = None, *, level: int = logging.INFO) -> Subscriber:
    """Subscriber that writes each redacted event to a stdlib logger.

    The JSON-lines handler installed by ``setup_structured_logging`` emits the
    ``event`` extra as a field of the log record.
    """

    target = logger if logger is not None else logging.getLogger(_EVENT_LOGGER_NAME)

    def write_event(event: OrchestratorEvent) -> None:
        redacted = redact_sensitive(event)
        target.log(
            level,
            redacted.event_type.value,
            extra={"event": redacted.to_dict(), "correlation_id": redacted.correlation_id},
        )

    return write_event


def _subscriber_name(callback: object) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    return name if isinstance(name, str) else type(callback).__name__


__all__ = ["DispatchError", "EventBus", "Subscriber", "log_sink"]
