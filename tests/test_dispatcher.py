"""Tests for the tool dispatcher."""

from __future__ import annotations

from typing import Any

import pytest

from agent_loop_engine.dispatcher import SKIPPED_TOOL_MESSAGE, ToolDispatcher
from agent_loop_engine.messages import ToolCall, user_message
from agent_loop_engine.steering import SteeringGate
from agent_loop_engine.tools import AgentTool, FunctionTool, ToolResult

SCHEMA = {"type": "object", "properties": {"value": {"type": "string"}}}


class RecordingTool(AgentTool):
    """Tool that records calls and echoes its input."""

    def __init__(self, name: str = "echo") -> None:
        self._name = name
        self.calls: list[tuple[str, dict[str, Any], Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Echo"

    @property
    def parameters(self) -> dict[str, Any]:
        return SCHEMA

    async def execute(self, tool_call_id, params, signal=None, on_update=None) -> str:
        self.calls.append((tool_call_id, params, signal))
        return f"echo:{params.get('value')}"


def _make_dispatcher(tools: list[AgentTool], gate: SteeringGate | None = None, signal: Any = None):
    events: list[Any] = []
    committed: list[Any] = []

    def commit(message: Any) -> None:
        committed.append(message)
        events.append(("commit", message))

    dispatcher = ToolDispatcher(
        tools, gate or SteeringGate(), events.append, commit, signal
    )
    return dispatcher, events, committed


def _calls(*values: str) -> list[ToolCall]:
    return [ToolCall(id=f"c{i}", name="echo", arguments={"value": v}) for i, v in enumerate(values)]


class TestToolDispatcher:
    @pytest.mark.asyncio
    async def test_executes_sequentially_in_order(self) -> None:
        tool = RecordingTool()
        dispatcher, events, committed = _make_dispatcher([tool])

        phase = await dispatcher.run(_calls("a", "b"))

        assert [c[1]["value"] for c in tool.calls] == ["a", "b"]
        assert phase.interrupted is False
        assert [m.text for m in phase.tool_results] == ["echo:a", "echo:b"]
        assert committed == phase.tool_results
        kinds = [e[0] if isinstance(e, tuple) else e.type for e in events]
        assert kinds == [
            "tool_execution_start",
            "tool_execution_end",
            "commit",
            "tool_execution_start",
            "tool_execution_end",
            "commit",
        ]

    @pytest.mark.asyncio
    async def test_string_result_is_wrapped(self) -> None:
        dispatcher, events, _ = _make_dispatcher([RecordingTool()])

        await dispatcher.run(_calls("x"))

        end = next(e for e in events if getattr(e, "type", "") == "tool_execution_end")
        assert isinstance(end.result, ToolResult)
        assert end.result.text_content == "echo:x"
        assert end.is_error is False

    @pytest.mark.asyncio
    async def test_skips_after_steering(self) -> None:
        tool = RecordingTool()
        polls = 0

        async def steering() -> list[Any]:
            nonlocal polls
            polls += 1
            return [user_message("change of plan")] if polls == 2 else []

        gate = SteeringGate(steering)
        dispatcher, _, _ = _make_dispatcher([tool], gate)

        phase = await dispatcher.run(_calls("a", "b", "c"))

        assert len(tool.calls) == 1
        assert phase.interrupted is True
        assert [r.is_error for r in phase.tool_results] == [False, True, True]
        assert phase.tool_results[1].text == SKIPPED_TOOL_MESSAGE
        assert [r.tool_call_id for r in phase.tool_results] == ["c0", "c1", "c2"]
        assert [m.content for m in gate.take_queued()] == ["change of plan"]
        assert polls == 2

    @pytest.mark.asyncio
    async def test_steering_before_first_call_skips_all(self) -> None:
        tool = RecordingTool()

        async def steering() -> list[Any]:
            return [user_message("stop")]

        dispatcher, _, _ = _make_dispatcher([tool], SteeringGate(steering))

        phase = await dispatcher.run(_calls("a", "b"))

        assert tool.calls == []
        assert all(r.is_error for r in phase.tool_results)

    @pytest.mark.asyncio
    async def test_failure_is_captured(self) -> None:
        def explode(value: str) -> str:
            raise KeyError("value")

        tool = FunctionTool("echo", "Explodes", SCHEMA, explode)
        dispatcher, _, _ = _make_dispatcher([tool, RecordingTool("other")])

        phase = await dispatcher.run(_calls("a") + [ToolCall(id="c9", name="other", arguments={})])

        assert phase.tool_results[0].is_error is True
        assert "value" in phase.tool_results[0].text
        assert phase.tool_results[1].is_error is False

    @pytest.mark.asyncio
    async def test_signal_and_id_passed_to_tool(self) -> None:
        tool = RecordingTool()
        token = object()
        dispatcher, _, _ = _make_dispatcher([tool], signal=token)

        await dispatcher.run(_calls("a"))

        assert tool.calls[0][0] == "c0"
        assert tool.calls[0][2] is token

    @pytest.mark.asyncio
    async def test_unknown_tool(self) -> None:
        dispatcher, _, _ = _make_dispatcher([])

        phase = await dispatcher.run(_calls("a"))

        assert phase.tool_results[0].is_error is True
        assert phase.tool_results[0].text == "Tool echo not found"
