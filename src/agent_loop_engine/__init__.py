"""
Agent Loop Engine - the turn/streaming state machine for LLM agents.

Drives a conversation between a user, a streaming model transport and a set
of tools: streamed text can be moderated (abort and retry with a
correction), queued steering messages interrupt pending tool calls, and an
outer cancellation token reaches every in-flight model call.

Example:
    from agent_loop_engine import (
        AgentContext,
        AgentLoopConfig,
        ModelDefinition,
        StreamTextResult,
        agent_loop,
        user_message,
    )

    def moderate(event):
        if "password" in event.accumulated_text.lower():
            return StreamTextResult.abort("Never reveal passwords.")
        return None

    stream = agent_loop(
        user_message("Hi!"),
        AgentContext(system_prompt="You are helpful."),
        AgentLoopConfig(model=ModelDefinition(id="gpt-4o-mini"), on_stream_text=moderate),
    )
    async for event in stream:
        print(event.type)
    messages = await stream.result()
"""

from agent_loop_engine.agent import Agent, AgentState, create_agent
from agent_loop_engine.cancellation import (
    CancellationSource,
    CancellationToken,
    CancelledByToken,
)
from agent_loop_engine.config import AgentLoopConfig, AgentSettings, ConfigError
from agent_loop_engine.dispatcher import SKIPPED_TOOL_MESSAGE, ToolDispatcher, ToolPhaseResult
from agent_loop_engine.event_stream import EventStream
from agent_loop_engine.events import (
    AGENT_END,
    AGENT_START,
    MESSAGE_END,
    MESSAGE_START,
    MESSAGE_UPDATE,
    STREAM_TEXT,
    TOOL_EXECUTION_END,
    TOOL_EXECUTION_START,
    TOOL_EXECUTION_UPDATE,
    TURN_END,
    TURN_START,
    AgentEndEvent,
    AgentEvent,
    AgentStartEvent,
    AssistantMessageEvent,
    EventBus,
    HandlerError,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    StreamTextEvent,
    StreamTextResult,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
    ToolExecutionUpdateEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from agent_loop_engine.logging import get_logger, setup_logging
from agent_loop_engine.loop import (
    AgentContext,
    LlmContext,
    StreamFn,
    StreamOptions,
    TurnDriver,
    agent_loop,
    agent_loop_continue,
)
from agent_loop_engine.messages import (
    RECOGNIZED_ROLES,
    AgentMessage,
    AssistantMessage,
    CustomMessage,
    ImageContent,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
    default_convert_to_llm,
    is_recognized,
    user_message,
)
from agent_loop_engine.models import CostBreakdown, ModelCost, ModelDefinition, TokenUsage
from agent_loop_engine.moderator import StreamModerator
from agent_loop_engine.steering import SteeringGate
from agent_loop_engine.tools import AgentTool, FunctionTool, ToolRegistry, ToolResult

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "agent_loop",
    "agent_loop_continue",
    "TurnDriver",
    "AgentContext",
    "LlmContext",
    "StreamOptions",
    "StreamFn",
    "EventStream",
    # Agent
    "Agent",
    "AgentState",
    "create_agent",
    # Config
    "AgentLoopConfig",
    "AgentSettings",
    "ConfigError",
    # Messages
    "AgentMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolResultMessage",
    "CustomMessage",
    "TextContent",
    "ImageContent",
    "ThinkingContent",
    "ToolCall",
    "RECOGNIZED_ROLES",
    "is_recognized",
    "default_convert_to_llm",
    "user_message",
    # Models
    "ModelDefinition",
    "ModelCost",
    "TokenUsage",
    "CostBreakdown",
    # Components
    "StreamModerator",
    "SteeringGate",
    "ToolDispatcher",
    "ToolPhaseResult",
    "SKIPPED_TOOL_MESSAGE",
    # Tools
    "AgentTool",
    "FunctionTool",
    "ToolResult",
    "ToolRegistry",
    # Cancellation
    "CancellationSource",
    "CancellationToken",
    "CancelledByToken",
    # Events
    "EventBus",
    "HandlerError",
    "AgentEvent",
    "AgentStartEvent",
    "AgentEndEvent",
    "TurnStartEvent",
    "TurnEndEvent",
    "MessageStartEvent",
    "MessageUpdateEvent",
    "MessageEndEvent",
    "ToolExecutionStartEvent",
    "ToolExecutionUpdateEvent",
    "ToolExecutionEndEvent",
    "AssistantMessageEvent",
    "StreamTextEvent",
    "StreamTextResult",
    "AGENT_START",
    "AGENT_END",
    "TURN_START",
    "TURN_END",
    "MESSAGE_START",
    "MESSAGE_UPDATE",
    "MESSAGE_END",
    "TOOL_EXECUTION_START",
    "TOOL_EXECUTION_UPDATE",
    "TOOL_EXECUTION_END",
    "STREAM_TEXT",
    # Logging
    "setup_logging",
    "get_logger",
]
