"""
Live, single-pass event sequence with a deferred result.

The producer (the run task) calls ``push`` for every event and finishes with
``end(result)`` or ``fail(exc)``. The consumer iterates with ``async for``
and awaits ``result()``. Events are delivered one at a time in push order;
a failure is raised from the iteration after every already-pushed event has
been delivered.
"""

from __future__ import annotations

import asyncio
from typing import Any, Generic, TypeVar

E = TypeVar("E")
R = TypeVar("R")

_END = object()


class _Failure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


class EventStream(Generic[E, R]):
    """
    An async iterator of events plus an awaitable final result.

    Must be created while an event loop is running.

    Usage:
        stream = agent_loop(prompt, context, config)
        async for event in stream:
            print(event.type)
        messages = await stream.result()
    """

    def __init__(self) -> None:
        loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._result: asyncio.Future[R] = loop.create_future()
        self._closed = False
        self._exhausted = False
        self._producer: asyncio.Task[Any] | None = None

    def attach(self, task: asyncio.Task[Any]) -> None:
        """Tie the task producing the events to this stream."""
        self._producer = task

    async def cancel(self) -> None:
        """
        Stop the producer and wait until it has finished.

        A no-op when nothing is attached or the producer is already done.
        """
        task = self._producer
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait([task])

    @property
    def closed(self) -> bool:
        """True once ``end`` or ``fail`` has been called."""
        return self._closed

    def push(self, event: E) -> None:
        if self._closed:
            raise RuntimeError("Cannot push to a closed event stream")
        self._queue.put_nowait(event)

    def end(self, result: R) -> None:
        if self._closed:
            return
        self._closed = True
        self._result.set_result(result)
        self._queue.put_nowait(_END)

    def fail(self, error: BaseException) -> None:
        if self._closed:
            return
        self._closed = True
        self._result.set_exception(error)
        self._queue.put_nowait(_Failure(error))

    def __aiter__(self) -> EventStream[E, R]:
        return self

    async def __anext__(self) -> E:
        if self._exhausted:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._exhausted = True
            # The failure is delivered here; don't warn about it again at GC.
            self._result.exception()
            raise item.error
        return item

    async def result(self) -> R:
        """Wait for the run to finish and return its result."""
        return await asyncio.shield(self._result)
