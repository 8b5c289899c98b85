"""Async primitives shared by the poller, the orchestrator, and the action executor."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

T = TypeVar("T")


class CancellationToken:
    """One-shot cooperative cancellation flag that async code can wait on."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(self.reason or "operation cancelled")


@dataclass(slots=True)
class WorkerPool(Generic[T]):
    """Run awaitables at most ``max_concurrency`` at a time, yielding results as they finish.

    The first failure cancels the rest and is re-raised. A fired ``cancel_token``
    stops the pool with ``asyncio.CancelledError``.
    """

    max_concurrency: int
    cancel_token: CancellationToken | None = None
    _permits: asyncio.Semaphore = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._permits = asyncio.Semaphore(self.max_concurrency)

    async def run(self, work: Iterable[Awaitable[T]]) -> AsyncIterator[T]:
        tasks = {asyncio.create_task(self._guarded(item)) for item in work}
        try:
            while tasks:
                done, tasks = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    yield task.result()
        finally:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

    async def _guarded(self, item: Awaitable[T]) -> T:
        async with self._permits:
            if self.cancel_token is not None and self.cancel_token.is_cancelled:
                _discard(item)
                self.cancel_token.raise_if_cancelled()
            return await item


async def await_with_cancellation(
    awaitable: Awaitable[T],
    *,
    cancel_token: CancellationToken | None,
) -> T:
    """Await ``awaitable``, abandoning (and cancelling) it once ``cancel_token`` fires."""

    if cancel_token is None:
        return await awaitable
    if cancel_token.is_cancelled:
        _discard(awaitable)
        cancel_token.raise_if_cancelled()

    work: asyncio.Future[T] = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        if work.done():
            return work.result()
        cancel_token.raise_if_cancelled()
        raise asyncio.CancelledError("operation cancelled")
    finally:
        for pending in (work, watcher):
            if not pending.done():
                pending.cancel()
        await asyncio.gather(work, watcher, return_exceptions=True)


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """``await_with_cancellation`` bounded by a wall-clock ``TimeoutError``."""

    if timeout_seconds <= 0:
        _discard(awaitable)
        raise ValueError("timeout_seconds must be > 0")
    async with asyncio.timeout(timeout_seconds):
        return await await_with_cancellation(awaitable, cancel_token=cancel_token)


async def sleep_with_cancellation(
    delay_seconds: float,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    cancel_token: CancellationToken | None = None,
) -> None:
    if delay_seconds <= 0:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return
    await await_with_cancellation(sleep(delay_seconds), cancel_token=cancel_token)


def _discard(awaitable: Awaitable[object]) -> None:
    # An unscheduled coroutine warns "never awaited" at GC unless closed.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "WorkerPool",
    "await_with_cancellation",
    "run_with_timeout",
    "sleep_with_cancellation",
]
