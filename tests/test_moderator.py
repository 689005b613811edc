"""Tests for the stream moderator."""

from __future__ import annotations

import logging

import pytest

from agent_loop_engine.events import StreamTextEvent, StreamTextResult
from agent_loop_engine.moderator import StreamModerator


class TestStreamModerator:
    def test_no_handler_always_continues(self) -> None:
        moderator = StreamModerator()
        assert moderator.feed("anything").action == "continue"
        assert moderator.accumulated_text == "anything"

    def test_accumulates_until_reset(self) -> None:
        seen: list[StreamTextEvent] = []
        moderator = StreamModerator(lambda e: seen.append(e))

        moderator.feed("a")
        moderator.feed("b")
        moderator.reset()
        moderator.feed("c")

        assert [(e.chunk, e.accumulated_text) for e in seen] == [
            ("a", "a"),
            ("b", "ab"),
            ("c", "c"),
        ]

    def test_none_means_continue(self) -> None:
        moderator = StreamModerator(lambda e: None)
        assert moderator.feed("x").is_abort is False

    def test_abort_is_returned(self) -> None:
        moderator = StreamModerator(lambda e: StreamTextResult.abort("stop that"))

        result = moderator.feed("x")

        assert result.is_abort
        assert result.content == "stop that"
        assert moderator.abort_count == 1

    def test_async_handler_rejected(self) -> None:
        async def handler(event: StreamTextEvent) -> None:
            return None

        moderator = StreamModerator(handler)
        with pytest.raises(TypeError, match="synchronous"):
            moderator.feed("x")

    def test_wrong_return_type_rejected(self) -> None:
        moderator = StreamModerator(lambda e: {"action": "abort"})
        with pytest.raises(TypeError, match="StreamTextResult"):
            moderator.feed("x")

    def test_handler_errors_propagate(self) -> None:
        def handler(event: StreamTextEvent) -> None:
            raise ValueError("bad rule")

        with pytest.raises(ValueError, match="bad rule"):
            StreamModerator(handler).feed("x")

    def test_unbounded_by_default(self) -> None:
        moderator = StreamModerator(lambda e: StreamTextResult.abort("no"))
        for _ in range(50):
            moderator.reset()
            assert moderator.feed("x").is_abort
        assert moderator.abort_count == 50

    def test_max_aborts_ignores_further_aborts(self, caplog: pytest.LogCaptureFixture) -> None:
        moderator = StreamModerator(lambda e: StreamTextResult.abort("no"), max_aborts=2)

        results = [moderator.feed("x").is_abort for _ in range(3)]

        assert results == [True, True, False]
        assert moderator.abort_count == 2
        with caplog.at_level(logging.WARNING, logger="agent_loop_engine"):
            moderator.feed("y")
        assert "limit of 2 aborts" in caplog.text
