"""
Stateful agent built on the loop.

``Agent`` keeps the conversation between runs, queues steering and follow-up
messages, exposes an abort switch and forwards every AgentEvent to its
listeners and its ``EventBus``.

Example:
    agent = create_agent(system_prompt="You are terse.", tools=[clock_tool])

    @agent.events.on("message_end")
    def show(event):
        if event.message.role == "assistant":
            print(event.message.text)

    await agent.prompt("What time is it?")
    agent.steer("Actually, use UTC.")  # interrupts pending tool calls
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from agent_loop_engine.cancellation import CancellationSource
from agent_loop_engine.config import (
    QUEUE_MODES,
    AgentLoopConfig,
    AgentSettings,
    ApiKeyResolver,
    ConfigError,
    ConvertToLlm,
    QueueMode,
    TransformContext,
)
from agent_loop_engine.events import (
    AgentEvent,
    EventBus,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    StreamTextEvent,
    StreamTextHandler,
    StreamTextResult,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
)
from agent_loop_engine.logging import get_logger, set_level
from agent_loop_engine.loop import (
    AgentContext,
    StreamFn,
    agent_loop,
    agent_loop_continue,
    normalize_prompts,
)
from agent_loop_engine.messages import (
    ASSISTANT,
    AgentMessage,
    AssistantMessage,
    ImageContent,
    TextContent,
    default_convert_to_llm,
    user_message,
)
from agent_loop_engine.models import ModelDefinition
from agent_loop_engine.tools import AgentTool

logger = get_logger("agent")

AgentListener = Callable[[AgentEvent], Any]


@dataclass
class AgentState:
    """Observable state of an :class:`Agent`."""

    system_prompt: str = ""
    model: ModelDefinition | None = None
    tools: list[AgentTool] = field(default_factory=list)
    messages: list[AgentMessage] = field(default_factory=list)
    is_streaming: bool = False
    stream_message: AssistantMessage | None = None  # in-flight partial
    pending_tool_calls: set[str] = field(default_factory=set)
    error: str | None = None


class Agent:
    """
    A conversation that survives across runs.

    ``on_stream_text`` may be set or replaced at any time; it is looked up
    on every streamed chunk.
    """

    def __init__(
        self,
        model: ModelDefinition,
        system_prompt: str = "",
        tools: Sequence[AgentTool] | None = None,
        messages: Sequence[AgentMessage] | None = None,
        *,
        convert_to_llm: ConvertToLlm = default_convert_to_llm,
        transform_context: TransformContext | None = None,
        on_stream_text: StreamTextHandler | None = None,
        stream_fn: StreamFn | None = None,
        events: EventBus | None = None,
        api_key: str | None = None,
        get_api_key: ApiKeyResolver | None = None,
        stream_options: dict[str, Any] | None = None,
        max_stream_aborts: int | None = None,
        steering_mode: QueueMode = "one-at-a-time",
        follow_up_mode: QueueMode = "one-at-a-time",
    ) -> None:
        for mode in (steering_mode, follow_up_mode):
            if mode not in QUEUE_MODES:
                raise ConfigError(f"Unknown queue mode: {mode!r}")

        self.state = AgentState(
            system_prompt=system_prompt,
            model=model,
            tools=list(tools or []),
            messages=list(messages or []),
        )
        self.on_stream_text = on_stream_text
        self.events = events or EventBus()
        self.convert_to_llm = convert_to_llm
        self.transform_context = transform_context
        self.stream_fn = stream_fn
        self.api_key = api_key
        self.get_api_key = get_api_key
        self.stream_options = dict(stream_options or {})
        self.max_stream_aborts = max_stream_aborts
        self.steering_mode = steering_mode
        self.follow_up_mode = follow_up_mode

        self._listeners: list[AgentListener] = []
        self._steering_queue: asyncio.Queue[AgentMessage] = asyncio.Queue()
        self._followup_queue: asyncio.Queue[AgentMessage] = asyncio.Queue()
        self._abort_source: CancellationSource | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: AgentListener) -> Callable[[], None]:
        """Call ``listener`` with every AgentEvent. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    # ------------------------------------------------------------------
    # Abort / Steering / Follow-up
    # ------------------------------------------------------------------

    @property
    def is_streaming(self) -> bool:
        return self.state.is_streaming

    def abort(self) -> None:
        """
        Cancel the current run.

        The in-flight transport call sees its token cancelled; the run ends
        with an ``aborted`` assistant message and still emits ``agent_end``.
        """
        if self._abort_source is not None:
            self._abort_source.cancel("aborted by user")

    def steer(self, message: AgentMessage | str) -> None:
        """
        Queue a steering message.

        It is picked up before the next tool call (skipping the remaining
        calls of that tool phase) or between turns.
        """
        self._steering_queue.put_nowait(_as_message(message))

    def follow_up(self, message: AgentMessage | str) -> None:
        """Queue a message to handle once the current run would otherwise finish."""
        self._followup_queue.put_nowait(_as_message(message))

    def clear_steering_queue(self) -> None:
        _clear(self._steering_queue)

    def clear_follow_up_queue(self) -> None:
        _clear(self._followup_queue)

    async def _next_steering(self) -> list[AgentMessage]:
        return _drain(self._steering_queue, self.steering_mode)

    async def _next_follow_up(self) -> list[AgentMessage]:
        return _drain(self._followup_queue, self.follow_up_mode)

    def _moderate(self, event: StreamTextEvent) -> StreamTextResult | None:
        if self.on_stream_text is None:
            return None
        return self.on_stream_text(event)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def prompt(
        self,
        input: str | AgentMessage | Sequence[AgentMessage],
        images: Sequence[ImageContent] | None = None,
    ) -> list[AgentMessage]:
        """
        Run the agent on new input.

        Returns:
            The messages the run added to the conversation.

        Raises:
            RuntimeError: A run is already in progress.
        """
        if self.state.is_streaming:
            raise RuntimeError(
                "Agent is already processing a prompt. "
                "Use steer() or follow_up() to queue messages, or wait for completion."
            )
        if isinstance(input, str) and images:
            prompts = [user_message([TextContent(text=input), *images])]
        else:
            prompts = normalize_prompts(input)
        return await self._run(prompts)

    async def continue_(self) -> list[AgentMessage]:
        """
        Resume from the current conversation without adding a message.

        Raises:
            RuntimeError: A run is already in progress.
            ConfigError: The conversation is empty or ends with an
                assistant message.
        """
        if self.state.is_streaming:
            raise RuntimeError("Agent is already processing. Wait for completion before continuing.")
        if not self.state.messages:
            raise ConfigError("No messages to continue from")
        if self.state.messages[-1].role == ASSISTANT:
            raise ConfigError("Cannot continue from message role: assistant")
        return await self._run(None)

    async def wait_for_idle(self) -> None:
        """Wait until no run is in progress."""
        await self._idle.wait()

    def reset(self) -> None:
        """Forget the conversation and any queued messages."""
        self.state.messages = []
        self.state.stream_message = None
        self.state.pending_tool_calls = set()
        self.state.error = None
        self.clear_steering_queue()
        self.clear_follow_up_queue()

    def _loop_config(self) -> AgentLoopConfig:
        if self.state.model is None:
            raise ConfigError("Agent has no model")
        return AgentLoopConfig(
            model=self.state.model,
            convert_to_llm=self.convert_to_llm,
            transform_context=self.transform_context,
            get_steering_messages=self._next_steering,
            get_follow_up_messages=self._next_follow_up,
            on_stream_text=self._moderate,
            get_api_key=self.get_api_key,
            api_key=self.api_key,
            max_stream_aborts=self.max_stream_aborts,
            stream_options=dict(self.stream_options),
        )

    async def _run(self, prompts: list[AgentMessage] | None) -> list[AgentMessage]:
        config = self._loop_config()
        context = AgentContext(
            system_prompt=self.state.system_prompt,
            messages=list(self.state.messages),
            tools=list(self.state.tools),
        )

        self._abort_source = CancellationSource()
        self.state.is_streaming = True
        self.state.stream_message = None
        self.state.error = None
        self._idle.clear()
        stream = None
        finished = False
        try:
            if prompts is None:
                stream = agent_loop_continue(
                    context, config, self._abort_source.token, self.stream_fn
                )
            else:
                stream = agent_loop(
                    prompts, context, config, self._abort_source.token, self.stream_fn
                )
            async for event in stream:
                self._apply(event)
                await self._publish(event)
            result = await stream.result()
            finished = True
            return result
        except Exception as e:
            self.state.error = str(e)
            raise
        finally:
            if stream is not None and not finished:
                # Never leave the run going after the caller has stopped listening
                self._abort_source.cancel("agent run abandoned")
                await stream.cancel()
            self.state.is_streaming = False
            self.state.stream_message = None
            self.state.pending_tool_calls = set()
            self._abort_source.close()
            self._abort_source = None
            self._idle.set()

    def _apply(self, event: AgentEvent) -> None:
        if isinstance(event, MessageStartEvent) and event.message.role == ASSISTANT:
            self.state.stream_message = event.message
        elif isinstance(event, MessageUpdateEvent):
            self.state.stream_message = event.message
        elif isinstance(event, MessageEndEvent):
            self.state.messages.append(event.message)
            if event.message.role == ASSISTANT:
                self.state.stream_message = None
                if event.message.error_message:
                    self.state.error = event.message.error_message
        elif isinstance(event, ToolExecutionStartEvent):
            self.state.pending_tool_calls.add(event.tool_call_id)
        elif isinstance(event, ToolExecutionEndEvent):
            self.state.pending_tool_calls.discard(event.tool_call_id)

    async def _publish(self, event: AgentEvent) -> None:
        for listener in list(self._listeners):
            result = listener(event)
            if inspect.isawaitable(result):
                await result
        await self.events.emit(event.type, event)


def _as_message(message: AgentMessage | str) -> AgentMessage:
    return user_message(message) if isinstance(message, str) else message


def _drain(queue: asyncio.Queue[AgentMessage], mode: QueueMode) -> list[AgentMessage]:
    """Non-blocking take of one message, or all of them."""
    taken: list[AgentMessage] = []
    while True:
        try:
            taken.append(queue.get_nowait())
        except asyncio.QueueEmpty:
            break
        if mode == "one-at-a-time":
            break
    return taken


def _clear(queue: asyncio.Queue[AgentMessage]) -> None:
    while True:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            return


def create_agent(
    settings: AgentSettings | None = None,
    events: EventBus | None = None,
    **kwargs: Any,
) -> Agent:
    """
    Create an agent from settings, moderated by an event bus.

    ``on_stream_text`` is wired to ``events.stream_text_moderator()`` so
    extensions can moderate streamed text through ``stream_text`` handlers;
    with no handlers registered every chunk continues.

    Args:
        settings: Defaults to :meth:`AgentSettings.from_env`.
        events: Bus to forward events to and moderate through.
        **kwargs: Additional ``Agent`` parameters (system_prompt, tools, ...).

    Example:
        bus = EventBus()
        bus.on("stream_text", lambda e: StreamTextResult.abort("No.") if "bad" in e.chunk else None)
        agent = create_agent(AgentSettings(model="gpt-4o-mini"), events=bus)
        await agent.prompt("Hello!")
    """
    settings = settings or AgentSettings.from_env()
    set_level(settings.log_level)
    events = events or EventBus()

    options: dict[str, Any] = {
        "api_key": settings.api_key,
        "stream_options": settings.stream_options(),
        "max_stream_aborts": settings.max_stream_aborts,
        "steering_mode": settings.steering_mode,
        "follow_up_mode": settings.follow_up_mode,
    }
    options.update(kwargs)
    model = options.pop("model", None) or settings.model_definition()
    on_stream_text = options.pop("on_stream_text", None) or events.stream_text_moderator()

    return Agent(model, events=events, on_stream_text=on_stream_text, **options)
