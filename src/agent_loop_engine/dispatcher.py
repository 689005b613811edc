"""
Sequential tool execution with skip-on-steering.

Each requested call, executed or skipped, produces
``tool_execution_start``, ``tool_execution_end`` and a committed
``ToolResultMessage``. Failures inside a tool never escape the phase.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.events import (
    AgentEvent,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
    ToolExecutionUpdateEvent,
)
from agent_loop_engine.logging import get_logger
from agent_loop_engine.messages import AgentMessage, ToolCall, ToolResultMessage
from agent_loop_engine.steering import SteeringGate
from agent_loop_engine.tools import AgentTool, ToolResult, coerce_tool_result

logger = get_logger("dispatcher")

SKIPPED_TOOL_MESSAGE = "Skipped due to queued user message."


@dataclass
class ToolPhaseResult:
    tool_results: list[ToolResultMessage] = field(default_factory=list)
    interrupted: bool = False


class ToolDispatcher:
    """
    Runs the tool calls of one assistant message, in order.

    Args:
        tools: Tools available in the context.
        gate: Polled before every call.
        emit: Receives lifecycle events.
        commit: Appends a message to the conversation and emits its
            ``message_start``/``message_end`` pair.
        signal: Run-level token handed to every tool.
    """

    def __init__(
        self,
        tools: Sequence[AgentTool],
        gate: SteeringGate,
        emit: Callable[[AgentEvent], None],
        commit: Callable[[AgentMessage], None],
        signal: CancellationToken | None = None,
    ) -> None:
        self._tools = {t.name: t for t in tools}
        self._gate = gate
        self._emit = emit
        self._commit = commit
        self._signal = signal

    async def run(self, tool_calls: Sequence[ToolCall]) -> ToolPhaseResult:
        self._gate.begin_phase()
        phase = ToolPhaseResult()

        for call in tool_calls:
            skip = await self._gate.poll()
            self._emit(
                ToolExecutionStartEvent(
                    tool_call_id=call.id, tool_name=call.name, args=call.arguments
                )
            )
            if skip:
                result, is_error = ToolResult.text(SKIPPED_TOOL_MESSAGE), True
                logger.debug("Skipped tool call %s (%s)", call.id, call.name)
            else:
                result, is_error = await self._execute(call)

            self._emit(
                ToolExecutionEndEvent(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    result=result,
                    is_error=is_error,
                )
            )
            message = ToolResultMessage(
                tool_call_id=call.id,
                tool_name=call.name,
                content=list(result.content),
                details=result.details,
                is_error=is_error,
            )
            self._commit(message)
            phase.tool_results.append(message)

        phase.interrupted = self._gate.interrupted
        return phase

    async def _execute(self, call: ToolCall) -> tuple[ToolResult, bool]:
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning("Model requested unknown tool: %s", call.name)
            return ToolResult.text(f"Tool {call.name} not found"), True

        def on_update(partial: ToolResult) -> None:
            self._emit(
                ToolExecutionUpdateEvent(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    args=call.arguments,
                    partial_result=partial,
                )
            )

        try:
            raw = await tool.execute(call.id, call.arguments, self._signal, on_update)
            return coerce_tool_result(raw), False
        except Exception as e:
            logger.warning("Tool %s failed: %s", call.name, e)
            return ToolResult.text(str(e) or type(e).__name__), True
