"""Tests for the live event stream."""

from __future__ import annotations

import asyncio

import pytest

from agent_loop_engine.event_stream import EventStream


class TestEventStream:
    @pytest.mark.asyncio
    async def test_delivers_events_in_order_then_result(self) -> None:
        stream: EventStream[str, list[str]] = EventStream()
        for name in ("a", "b", "c"):
            stream.push(name)
        stream.end(["done"])

        assert [e async for e in stream] == ["a", "b", "c"]
        assert await stream.result() == ["done"]

    @pytest.mark.asyncio
    async def test_single_pass(self) -> None:
        stream: EventStream[str, None] = EventStream()
        stream.push("a")
        stream.end(None)

        assert [e async for e in stream] == ["a"]
        assert [e async for e in stream] == []

    @pytest.mark.asyncio
    async def test_consumer_waits_for_producer(self) -> None:
        stream: EventStream[int, int] = EventStream()

        async def produce() -> None:
            for i in range(3):
                await asyncio.sleep(0)
                stream.push(i)
            stream.end(3)

        task = asyncio.get_running_loop().create_task(produce())
        received = [e async for e in stream]
        await task

        assert received == [0, 1, 2]
        assert await stream.result() == 3

    @pytest.mark.asyncio
    async def test_failure_after_queued_events(self) -> None:
        stream: EventStream[str, None] = EventStream()
        stream.push("a")
        stream.fail(ValueError("boom"))

        received: list[str] = []
        with pytest.raises(ValueError, match="boom"):
            async for event in stream:
                received.append(event)

        assert received == ["a"]
        with pytest.raises(ValueError, match="boom"):
            await stream.result()

    @pytest.mark.asyncio
    async def test_push_after_close_rejected(self) -> None:
        stream: EventStream[str, None] = EventStream()
        stream.end(None)

        assert stream.closed
        with pytest.raises(RuntimeError):
            stream.push("late")

    @pytest.mark.asyncio
    async def test_result_can_be_awaited_twice(self) -> None:
        stream: EventStream[str, int] = EventStream()
        stream.end(7)

        assert await stream.result() == 7
        assert await stream.result() == 7

    def test_requires_running_loop(self) -> None:
        with pytest.raises(RuntimeError):
            EventStream()
