"""
Message model for the agent loop.

Messages form a tagged union on ``role``. The loop understands three roles
(``user``, ``assistant`` and ``tool_result``); every other role is opaque and
is carried through the conversation untouched. Mapping opaque messages into
something the transport accepts is the job of the caller-supplied
``convert_to_llm`` hook.

Example:
    from agent_loop_engine.messages import CustomMessage, UserMessage

    history = [
        CustomMessage(role="notification", payload={"text": "build passed"}),
        UserMessage(content="What changed?"),
    ]
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from agent_loop_engine.models import TokenUsage

# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


@dataclass
class TextContent:
    """Text content block within a message."""

    text: str = ""
    type: str = field(default="text", init=False)


@dataclass
class ImageContent:
    """Image content block within a message (base64-encoded)."""

    data: str = ""
    mime_type: str = "image/png"
    type: str = field(default="image", init=False)


@dataclass
class ThinkingContent:
    """Reasoning emitted by the model before its answer."""

    thinking: str = ""
    type: str = field(default="thinking", init=False)


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool_call", init=False)


UserContent = Union[str, list[Union[TextContent, ImageContent]]]
AssistantContent = Union[TextContent, ThinkingContent, ToolCall]

StopReason = Literal["stop", "length", "tool_use", "error", "aborted"]

# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

USER = "user"
ASSISTANT = "assistant"
TOOL_RESULT = "tool_result"

RECOGNIZED_ROLES: frozenset[str] = frozenset({USER, ASSISTANT, TOOL_RESULT})


@dataclass
class UserMessage:
    """A message authored by the user (or injected on the user's behalf)."""

    content: UserContent = ""
    timestamp: float = field(default_factory=time.time)
    role: str = field(default=USER, init=False)

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextContent))


@dataclass
class AssistantMessage:
    """A completed (or error-flagged) model response."""

    content: list[AssistantContent] = field(default_factory=list)
    stop_reason: StopReason = "stop"
    usage: TokenUsage = field(default_factory=TokenUsage)
    api: str = ""
    provider: str = ""
    model: str = ""
    error_message: str | None = None
    timestamp: float = field(default_factory=time.time)
    role: str = field(default=ASSISTANT, init=False)

    @property
    def text(self) -> str:
        """Concatenated text blocks, ignoring reasoning and tool calls."""
        return "".join(b.text for b in self.content if isinstance(b, TextContent))

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [b for b in self.content if isinstance(b, ToolCall)]


@dataclass
class ToolResultMessage:
    """Outcome of one tool call, keyed by the originating tool call id."""

    tool_call_id: str
    tool_name: str
    content: list[TextContent | ImageContent] = field(default_factory=list)
    details: Any = None
    is_error: bool = False
    timestamp: float = field(default_factory=time.time)
    role: str = field(default=TOOL_RESULT, init=False)

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextContent))


@dataclass
class CustomMessage:
    """
    Application-defined message the loop never interprets.

    Use any ``role`` outside :data:`RECOGNIZED_ROLES`. The loop stores and
    returns these untouched; ``convert_to_llm`` decides whether (and how)
    the transport sees them.
    """

    role: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


# Any object exposing ``role`` and ``timestamp`` is a valid agent message;
# the recognized dataclasses above are the ones the loop switches on.
AgentMessage = Union[UserMessage, AssistantMessage, ToolResultMessage, CustomMessage, Any]
LlmMessage = Union[UserMessage, AssistantMessage, ToolResultMessage]


def is_recognized(message: Any) -> bool:
    """Return True if the loop understands ``message``'s role."""
    return getattr(message, "role", None) in RECOGNIZED_ROLES


def default_convert_to_llm(messages: Sequence[AgentMessage]) -> list[LlmMessage]:
    """Keep only messages with a recognized role, in order."""
    return [m for m in messages if is_recognized(m)]


def user_message(content: UserContent) -> UserMessage:
    """Build a user message from text or content blocks."""
    if isinstance(content, str):
        return UserMessage(content=content)
    return UserMessage(content=list(content))
