"""
Event types and the observer bus for the agent loop.

Three families of events live here:

- **AgentEvent** dataclasses: the lifecycle notifications a run emits, in
  strict temporal order. History can be rebuilt from ``message_end`` events.
- **AssistantMessageEvent**: what a transport yields while streaming one
  model response.
- **Stream text** types: the per-chunk input and decision of a stream
  moderator.

``EventBus`` lets extensions observe a run and moderate streamed text.

Example:
    from agent_loop_engine.events import EventBus, StreamTextResult

    bus = EventBus()

    @bus.on("stream_text")
    def no_secrets(event):
        if "BEGIN PRIVATE KEY" in event.accumulated_text:
            return StreamTextResult.abort("Never print key material.")
        return None

    moderator = bus.stream_text_moderator()
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from agent_loop_engine.logging import get_logger
from agent_loop_engine.messages import (
    AgentMessage,
    AssistantMessage,
    ImageContent,
    TextContent,
    ToolCall,
    ToolResultMessage,
)

logger = get_logger("events")


# ---------------------------------------------------------------------------
# Event name constants
# ---------------------------------------------------------------------------

AGENT_START = "agent_start"
AGENT_END = "agent_end"
TURN_START = "turn_start"
TURN_END = "turn_end"
MESSAGE_START = "message_start"
MESSAGE_UPDATE = "message_update"
MESSAGE_END = "message_end"
TOOL_EXECUTION_START = "tool_execution_start"
TOOL_EXECUTION_UPDATE = "tool_execution_update"
TOOL_EXECUTION_END = "tool_execution_end"
STREAM_TEXT = "stream_text"

AGENT_EVENT_TYPES: tuple[str, ...] = (
    AGENT_START,
    TURN_START,
    MESSAGE_START,
    MESSAGE_UPDATE,
    MESSAGE_END,
    TOOL_EXECUTION_START,
    TOOL_EXECUTION_UPDATE,
    TOOL_EXECUTION_END,
    TURN_END,
    AGENT_END,
)


# ---------------------------------------------------------------------------
# Transport events
# ---------------------------------------------------------------------------


@dataclass
class AssistantMessageEvent:
    """
    One increment of a streaming model response, as yielded by a transport.

    Lifecycle for a single response:
        start → (text_* | thinking_* | toolcall_*)* → done | error

    ``partial`` is the message as assembled so far. ``done`` carries the
    final message in ``message``; ``error`` carries an error-flagged
    message (``stop_reason`` "error" or "aborted") in ``message``.
    """

    type: str
    partial: AssistantMessage | None = None
    content_index: int = 0
    delta: str = ""
    content: str = ""
    tool_call: ToolCall | None = None
    reason: str | None = None
    message: AssistantMessage | None = None


TERMINAL_STREAM_EVENTS = frozenset({"done", "error"})


# ---------------------------------------------------------------------------
# Stream text moderation
# ---------------------------------------------------------------------------


@dataclass
class StreamTextEvent:
    """A text increment of the in-flight response and everything before it."""

    chunk: str
    accumulated_text: str


@dataclass
class StreamTextResult:
    """Decision of a stream moderator: keep streaming, or abort and inject."""

    action: Literal["continue", "abort"] = "continue"
    content: str | list[TextContent | ImageContent] | None = None

    def __post_init__(self) -> None:
        if self.action not in ("continue", "abort"):
            raise ValueError(f"Unknown stream text action: {self.action!r}")
        if self.action == "abort" and self.content is None:
            raise ValueError("An abort decision needs content to inject")

    @classmethod
    def continue_(cls) -> StreamTextResult:
        return cls(action="continue")

    @classmethod
    def abort(cls, content: str | list[TextContent | ImageContent]) -> StreamTextResult:
        return cls(action="abort", content=content)

    @property
    def is_abort(self) -> bool:
        return self.action == "abort"


StreamTextHandler = Callable[[StreamTextEvent], Union[StreamTextResult, None]]


# ---------------------------------------------------------------------------
# Agent lifecycle events
# ---------------------------------------------------------------------------


@dataclass
class AgentStartEvent:
    """Emitted once, before anything else in a run."""

    type: str = field(default=AGENT_START, init=False)


@dataclass
class TurnStartEvent:
    """Emitted when a new turn begins (not on moderator retries)."""

    turn: int = 0
    type: str = field(default=TURN_START, init=False)


@dataclass
class MessageStartEvent:
    message: AgentMessage
    type: str = field(default=MESSAGE_START, init=False)


@dataclass
class MessageUpdateEvent:
    """A streaming increment of the in-flight assistant message."""

    message: AssistantMessage
    assistant_message_event: AssistantMessageEvent
    type: str = field(default=MESSAGE_UPDATE, init=False)


@dataclass
class MessageEndEvent:
    """A message was committed to the conversation."""

    message: AgentMessage
    type: str = field(default=MESSAGE_END, init=False)


@dataclass
class ToolExecutionStartEvent:
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    type: str = field(default=TOOL_EXECUTION_START, init=False)


@dataclass
class ToolExecutionUpdateEvent:
    """Partial output reported by a running tool."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    partial_result: Any = None
    type: str = field(default=TOOL_EXECUTION_UPDATE, init=False)


@dataclass
class ToolExecutionEndEvent:
    tool_call_id: str
    tool_name: str
    result: Any = None  # ToolResult, avoid circular import
    is_error: bool = False
    type: str = field(default=TOOL_EXECUTION_END, init=False)


@dataclass
class TurnEndEvent:
    turn: int
    message: AssistantMessage
    tool_results: list[ToolResultMessage] = field(default_factory=list)
    type: str = field(default=TURN_END, init=False)


@dataclass
class AgentEndEvent:
    """Emitted once, last. ``messages`` are the messages this run created."""

    messages: list[AgentMessage] = field(default_factory=list)
    type: str = field(default=AGENT_END, init=False)


AgentEvent = Union[
    AgentStartEvent,
    TurnStartEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    MessageEndEvent,
    ToolExecutionStartEvent,
    ToolExecutionUpdateEvent,
    ToolExecutionEndEvent,
    TurnEndEvent,
    AgentEndEvent,
]


# ---------------------------------------------------------------------------
# Handler types
# ---------------------------------------------------------------------------

# Handlers can be sync or async, and optionally return a result object.
EventHandler = Callable[..., Any]


@dataclass
class _HandlerEntry:
    """Internal: a registered handler with metadata."""

    event: str
    handler: EventHandler
    priority: int = 0  # lower runs first
    source: str = ""  # who registered it (extension name, etc.)
    rejected: bool = False  # set once a sync-only emit saw it return an awaitable


@dataclass
class HandlerError:
    """A handler failure reported to ``on_error`` listeners."""

    source: str
    event: str
    error: str


ErrorListener = Callable[[HandlerError], None]


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------


class EventBus:
    """
    An observer bus for agent lifecycle events and stream moderation.

    Handlers are called in priority order (lower first). ``emit`` accepts
    sync or async handlers; ``emit_stream_text`` is synchronous and only
    honors synchronous handlers.

    Usage:
        bus = EventBus()

        # Decorator style
        @bus.on("tool_execution_end")
        def on_tool(event: ToolExecutionEndEvent):
            print(event.tool_name, "failed" if event.is_error else "ok")

        # Method style
        unsub = bus.on("agent_end", lambda e: print(len(e.messages)))
        unsub()  # remove handler
    """

    def __init__(self) -> None:
        self._handlers: list[_HandlerEntry] = []
        self._error_listeners: list[ErrorListener] = []

    def on(
        self,
        event: str,
        handler: EventHandler | None = None,
        priority: int = 0,
        source: str = "",
    ) -> Callable[[], None] | Callable[[EventHandler], EventHandler]:
        """
        Register an event handler.

        Can be used as a method call or as a decorator:

            # Method call: returns unsubscribe function
            unsub = bus.on("agent_start", my_handler)
            unsub()

            # Decorator: returns the original function
            @bus.on("agent_start")
            def my_handler(event):
                ...
        """
        if handler is not None:
            entry = _HandlerEntry(
                event=event, handler=handler, priority=priority, source=source
            )
            self._handlers.append(entry)

            def unsubscribe() -> None:
                try:
                    self._handlers.remove(entry)
                except ValueError:
                    pass

            return unsubscribe

        def decorator(fn: EventHandler) -> EventHandler:
            self.on(event, fn, priority=priority, source=source)
            return fn

        return decorator

    def off(self, event: str, handler: EventHandler) -> None:
        """Remove a specific handler for an event."""
        self._handlers = [
            h for h in self._handlers if not (h.event == event and h.handler is handler)
        ]

    def off_by_source(self, source: str) -> int:
        """Remove all handlers registered by a given source. Returns count removed."""
        before = len(self._handlers)
        self._handlers = [h for h in self._handlers if h.source != source]
        return before - len(self._handlers)

    def clear(self, event: str | None = None) -> None:
        """Remove all handlers, or all handlers for a specific event."""
        if event is None:
            self._handlers.clear()
        else:
            self._handlers = [h for h in self._handlers if h.event != event]

    def on_error(self, listener: ErrorListener) -> Callable[[], None]:
        """Register a listener for handler failures. Returns an unsubscribe function."""
        self._error_listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._error_listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def _relevant(self, event: str) -> list[_HandlerEntry]:
        return sorted(
            (h for h in self._handlers if h.event == event),
            key=lambda h: h.priority,
        )

    def _report(self, entry: _HandlerEntry, error: str) -> None:
        logger.warning(
            "Event handler error (event=%s, source=%s): %s",
            entry.event,
            entry.source,
            error,
        )
        failure = HandlerError(source=entry.source, event=entry.event, error=error)
        for listener in list(self._error_listeners):
            listener(failure)

    async def emit(self, event: str, data: Any = None) -> list[Any]:
        """
        Emit an event and collect handler results.

        Both sync and async handlers are supported. A failing handler is
        reported and skipped; it never interrupts the emitter.

        Returns:
            List of non-None results from handlers
        """
        results: list[Any] = []
        for entry in self._relevant(event):
            try:
                result = entry.handler(data)
                if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                    result = await result
                if result is not None:
                    results.append(result)
            except Exception as e:
                self._report(entry, str(e))
        return results

    def emit_sync(self, event: str, data: Any = None) -> list[Any]:
        """
        Emit an event synchronously (only calls sync handlers).

        Async handlers are skipped and reported.
        """
        results: list[Any] = []
        for entry in self._relevant(event):
            try:
                result = entry.handler(data)
                if inspect.isawaitable(result):
                    # Can't await in sync context; close the coroutine and report
                    if asyncio.iscoroutine(result):
                        result.close()
                    self._report(entry, f"Async handler skipped in sync emit of '{event}'")
                    continue
                if result is not None:
                    results.append(result)
            except Exception as e:
                self._report(entry, str(e))
        return results

    def emit_stream_text(self, event: StreamTextEvent) -> StreamTextResult:
        """
        Ask ``stream_text`` handlers whether streaming may continue.

        The first handler to return an abort wins; later handlers are not
        called. Handlers that raise count as "continue" and are reported.
        A handler returning an awaitable is reported once and ignored from
        then on: moderation runs per chunk and cannot wait.
        """
        for entry in self._relevant(STREAM_TEXT):
            if entry.rejected:
                continue
            try:
                result = entry.handler(event)
            except Exception as e:
                self._report(entry, str(e))
                continue
            if inspect.isawaitable(result):
                if asyncio.iscoroutine(result):
                    result.close()
                entry.rejected = True
                self._report(
                    entry,
                    "stream_text handlers must be synchronous; returned an awaitable",
                )
                continue
            if isinstance(result, StreamTextResult) and result.is_abort:
                return result
        return StreamTextResult.continue_()

    def stream_text_moderator(self) -> StreamTextHandler:
        """Return a synchronous moderator that consults this bus."""
        return self.emit_stream_text

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers."""
        return len(self._handlers)

    def has_handlers(self, event: str) -> bool:
        """Check if any handlers are registered for an event."""
        return any(h.event == event for h in self._handlers)
