"""
The turn/streaming state machine and its entry points.

``agent_loop`` starts a run from one or more new prompt messages;
``agent_loop_continue`` resumes from a context whose last message has not
been answered yet. Both schedule a ``TurnDriver`` on the running event loop
and return an ``EventStream`` of AgentEvents whose result is the list of
messages the run created.

A run moves through::

    Start -> Generating -> (ToolPhase | Idle) -> Generating | Done

Example:
    stream = agent_loop(
        user_message("What's the weather in Paris?"),
        AgentContext(system_prompt="Be brief.", tools=[weather_tool]),
        AgentLoopConfig(model=ModelDefinition(id="gpt-4o-mini")),
    )
    async for event in stream:
        if event.type == "message_end":
            print(event.message.role)
    new_messages = await stream.result()
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from agent_loop_engine.cancellation import CancellationSource, CancellationToken
from agent_loop_engine.config import AgentLoopConfig, ConfigError
from agent_loop_engine.dispatcher import ToolDispatcher
from agent_loop_engine.event_stream import EventStream
from agent_loop_engine.events import (
    TERMINAL_STREAM_EVENTS,
    AgentEndEvent,
    AgentEvent,
    AgentStartEvent,
    AssistantMessageEvent,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    StreamTextResult,
    TurnEndEvent,
    TurnStartEvent,
)
from agent_loop_engine.logging import get_logger
from agent_loop_engine.messages import (
    AgentMessage,
    AssistantMessage,
    ImageContent,
    LlmMessage,
    TextContent,
    ToolResultMessage,
    UserContent,
    user_message,
)
from agent_loop_engine.models import ModelDefinition
from agent_loop_engine.moderator import StreamModerator
from agent_loop_engine.steering import SteeringGate
from agent_loop_engine.tools import AgentTool

logger = get_logger("loop")

# Hold references to running drivers so they aren't garbage collected.
_running: set[asyncio.Task[Any]] = set()


# ---------------------------------------------------------------------------
# Context and transport contract
# ---------------------------------------------------------------------------


@dataclass
class AgentContext:
    """Conversation state owned by the caller."""

    system_prompt: str = ""
    messages: list[AgentMessage] = field(default_factory=list)
    tools: list[AgentTool] = field(default_factory=list)

    def copy(self) -> AgentContext:
        """Shallow copy: new lists, same message and tool objects."""
        return AgentContext(
            system_prompt=self.system_prompt,
            messages=list(self.messages),
            tools=list(self.tools),
        )


@dataclass
class LlmContext:
    """What the transport sees for one invocation."""

    system_prompt: str
    messages: list[LlmMessage]
    tools: list[AgentTool] = field(default_factory=list)


@dataclass
class StreamOptions:
    """
    Per-invocation transport options.

    ``signal`` is derived from the run token and is cancelled when the run
    is cancelled or when the driver abandons this invocation.
    """

    signal: CancellationToken
    api_key: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


AssistantStream = AsyncIterator[AssistantMessageEvent]
StreamFn = Callable[
    [ModelDefinition, LlmContext, StreamOptions],
    Union[AssistantStream, Awaitable[AssistantStream]],
]


def _default_stream_fn() -> StreamFn:
    from agent_loop_engine.adapters.openai import stream_openai

    return stream_openai


class _StreamAborted:
    """Outcome of a generation the moderator cut short."""

    def __init__(self, decision: StreamTextResult) -> None:
        self.decision = decision


# ---------------------------------------------------------------------------
# Turn driver
# ---------------------------------------------------------------------------


class TurnDriver:
    """
    Drives one run: generations, tool phases, steering and follow-ups.

    The driver works on a private copy of the context. Messages it commits
    are appended to that copy and to ``new_messages``; the latter is the run
    result and the payload of ``agent_end``.
    """

    def __init__(
        self,
        context: AgentContext,
        config: AgentLoopConfig,
        stream: EventStream[AgentEvent, list[AgentMessage]],
        signal: CancellationToken | None = None,
        stream_fn: StreamFn | None = None,
    ) -> None:
        self._context = context.copy()
        self._config = config
        self._stream = stream
        self._run_source = CancellationSource(signal)
        self._stream_fn = stream_fn or _default_stream_fn()
        self._moderator = StreamModerator(
            config.on_stream_text, max_aborts=config.max_stream_aborts
        )
        self._gate = SteeringGate(config.get_steering_messages)
        self.new_messages: list[AgentMessage] = []
        self._turn = -1

    @property
    def turn(self) -> int:
        return self._turn

    @property
    def signal(self) -> CancellationToken:
        """The run-level token (linked to the caller's token, if any)."""
        return self._run_source.token

    async def run(self, prompts: Sequence[AgentMessage] = ()) -> None:
        """Execute the run, ending or failing the event stream."""
        try:
            self._emit(AgentStartEvent())
            self._start_turn()
            for prompt in prompts:
                self._commit(prompt)
            await self._run_turns()
            self._emit(AgentEndEvent(messages=list(self.new_messages)))
        except asyncio.CancelledError as e:
            self._stream.fail(e)
            raise
        except Exception as e:
            logger.error("Agent run failed: %s", e)
            self._stream.fail(e)
            return
        finally:
            self._run_source.close()
        logger.debug("Agent run finished with %d new message(s)", len(self.new_messages))
        self._stream.end(list(self.new_messages))

    # -- events and commits ------------------------------------------------

    def _emit(self, event: AgentEvent) -> None:
        self._stream.push(event)

    def _commit(self, message: AgentMessage) -> None:
        self._context.messages.append(message)
        self.new_messages.append(message)
        self._emit(MessageStartEvent(message=message))
        self._emit(MessageEndEvent(message=message))

    def _start_turn(self) -> None:
        self._turn += 1
        logger.debug("Turn %d started", self._turn)
        self._emit(TurnStartEvent(turn=self._turn))

    # -- state machine ----------------------------------------------------

    async def _run_turns(self) -> None:
        pending = await self._gate.poll_between_turns()
        first = True

        while True:
            has_tool_calls = True
            while has_tool_calls or pending:
                if not first:
                    self._start_turn()
                first = False

                for message in pending:
                    self._commit(message)
                pending = []

                message = await self._generate()
                if message.stop_reason in ("error", "aborted"):
                    logger.debug("Run ending on stop reason %s", message.stop_reason)
                    self._emit(TurnEndEvent(turn=self._turn, message=message))
                    return

                tool_calls = message.tool_calls if message.stop_reason == "tool_use" else []
                has_tool_calls = bool(tool_calls)
                tool_results: list[ToolResultMessage] = []
                interrupted = False
                if tool_calls:
                    phase = await ToolDispatcher(
                        self._context.tools,
                        self._gate,
                        self._emit,
                        self._commit,
                        self._run_source.token,
                    ).run(tool_calls)
                    tool_results = phase.tool_results
                    interrupted = phase.interrupted

                self._emit(
                    TurnEndEvent(turn=self._turn, message=message, tool_results=tool_results)
                )

                if interrupted:
                    pending = self._gate.take_queued()
                else:
                    pending = await self._gate.poll_between_turns()

            follow_ups = await self._poll_follow_ups()
            if not follow_ups:
                return
            logger.debug("Continuing with %d follow-up message(s)", len(follow_ups))
            pending = follow_ups

    async def _poll_follow_ups(self) -> list[AgentMessage]:
        if self._config.get_follow_up_messages is None:
            return []
        return list(await self._config.get_follow_up_messages())

    async def _generate(self) -> AssistantMessage:
        """Produce one committed assistant message, retrying on moderator aborts."""
        while True:
            llm_context = await self._build_llm_context()

            if self._run_source.cancelled:
                message = self._failure_message("aborted", "Request aborted before generation")
                self._commit(message)
                return message

            api_key = await self._resolve_api_key()
            with CancellationSource(self._run_source.token) as call:
                options = StreamOptions(
                    signal=call.token,
                    api_key=api_key,
                    extra=dict(self._config.stream_options),
                )
                outcome = await self._stream_once(llm_context, options, call)

            if isinstance(outcome, _StreamAborted):
                logger.info(
                    "Stream aborted by moderator after %d chars; retrying",
                    len(self._moderator.accumulated_text),
                )
                self._commit(user_message(outcome.decision.content))
                continue
            return outcome

    async def _build_llm_context(self) -> LlmContext:
        messages = self._context.messages
        if self._config.transform_context is not None:
            messages = list(
                await self._config.transform_context(list(messages), self._run_source.token)
            )
            self._context.messages = messages

        llm_messages = self._config.convert_to_llm(list(messages))
        if inspect.isawaitable(llm_messages):
            llm_messages = await llm_messages

        return LlmContext(
            system_prompt=self._context.system_prompt,
            messages=list(llm_messages),
            tools=list(self._context.tools),
        )

    async def _resolve_api_key(self) -> str | None:
        if self._config.get_api_key is not None:
            key = await self._config.get_api_key(self._config.model.provider)
            if key:
                return key
        return self._config.api_key

    async def _stream_once(
        self,
        llm_context: LlmContext,
        options: StreamOptions,
        call: CancellationSource,
    ) -> AssistantMessage | _StreamAborted:
        self._moderator.reset()
        started = False

        def start(partial: AssistantMessage | None) -> None:
            nonlocal started
            if not started:
                started = True
                self._emit(MessageStartEvent(message=partial or AssistantMessage()))

        try:
            response = self._stream_fn(self._config.model, llm_context, options)
            if inspect.isawaitable(response):
                response = await response
            iterator = response.__aiter__()
        except Exception as e:
            return self._contain_transport_failure(e, call, started)

        try:
            while True:
                try:
                    event = await iterator.__anext__()
                except StopAsyncIteration:
                    return self._contain_transport_failure(
                        RuntimeError("Transport stream ended without a terminal event"),
                        call,
                        started,
                    )
                except Exception as e:
                    return self._contain_transport_failure(e, call, started)

                if event.type in TERMINAL_STREAM_EVENTS:
                    message = self._final_message(event, call)
                    start(message)
                    self._context.messages.append(message)
                    self.new_messages.append(message)
                    self._emit(MessageEndEvent(message=message))
                    return message

                start(event.partial)
                if event.type == "text_delta":
                    decision = self._moderator.feed(event.delta)
                    if decision.is_abort:
                        call.cancel("stream moderator abort")
                        return _StreamAborted(decision)
                if event.type != "start" and event.partial is not None:
                    self._emit(
                        MessageUpdateEvent(message=event.partial, assistant_message_event=event)
                    )
        finally:
            await _close_iterator(iterator)

    def _final_message(self, event: AssistantMessageEvent, call: CancellationSource) -> AssistantMessage:
        message = event.message or event.partial
        if event.type == "done":
            return message or AssistantMessage()
        if message is None:
            message = self._failure_message(
                "aborted" if call.cancelled else "error",
                event.reason or "Transport reported an error",
            )
        elif message.stop_reason not in ("error", "aborted"):
            message.stop_reason = "aborted" if call.cancelled else "error"
        return message

    def _contain_transport_failure(
        self, error: Exception, call: CancellationSource, started: bool
    ) -> AssistantMessage:
        logger.warning("Transport failed: %s", error)
        message = self._failure_message(
            "aborted" if call.cancelled else "error", str(error) or type(error).__name__
        )
        if not started:
            self._emit(MessageStartEvent(message=message))
        self._context.messages.append(message)
        self.new_messages.append(message)
        self._emit(MessageEndEvent(message=message))
        return message

    def _failure_message(self, stop_reason: str, error_message: str) -> AssistantMessage:
        model = self._config.model
        return AssistantMessage(
            stop_reason=stop_reason,  # type: ignore[arg-type]
            api=model.api,
            provider=model.provider,
            model=model.id,
            error_message=error_message,
        )


async def _close_iterator(iterator: Any) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug("Error closing transport stream: %s", e)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def normalize_prompts(
    prompts: AgentMessage | UserContent | Sequence[AgentMessage],
) -> list[AgentMessage]:
    """
    Turn prompt input into a list of messages.

    A string or a list made only of content blocks becomes one user
    message; a single message is wrapped; other sequences are taken as
    messages, with plain strings converted to user messages.
    """
    if isinstance(prompts, str):
        return [user_message(prompts)]
    if not isinstance(prompts, Sequence):
        return [prompts]
    items = list(prompts)
    if items and all(isinstance(p, (TextContent, ImageContent)) for p in items):
        return [user_message(items)]
    return [user_message(p) if isinstance(p, str) else p for p in items]


def _check_tools(context: AgentContext) -> None:
    seen: set[str] = set()
    for tool in context.tools:
        if tool.name in seen:
            raise ConfigError(f"Duplicate tool name in context: {tool.name}")
        seen.add(tool.name)


def _start(
    prompts: list[AgentMessage],
    context: AgentContext,
    config: AgentLoopConfig,
    signal: CancellationToken | None,
    stream_fn: StreamFn | None,
) -> EventStream[AgentEvent, list[AgentMessage]]:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        raise RuntimeError(
            "agent_loop must be called from within a running asyncio event loop"
        ) from None

    stream: EventStream[AgentEvent, list[AgentMessage]] = EventStream()
    driver = TurnDriver(context, config, stream, signal=signal, stream_fn=stream_fn)
    task = loop.create_task(driver.run(prompts))
    _running.add(task)
    task.add_done_callback(_running.discard)
    stream.attach(task)
    return stream


def agent_loop(
    prompts: AgentMessage | str | Sequence[AgentMessage],
    context: AgentContext,
    config: AgentLoopConfig,
    signal: CancellationToken | None = None,
    stream_fn: StreamFn | None = None,
) -> EventStream[AgentEvent, list[AgentMessage]]:
    """
    Start a run with new prompt message(s).

    The prompts are committed (``message_start``/``message_end`` each)
    before the first model invocation and are part of the run result.

    Raises:
        ConfigError: No prompts, or duplicate tool names in ``context``.
        RuntimeError: No running event loop.
    """
    prompt_list = normalize_prompts(prompts)
    if not prompt_list:
        raise ConfigError("Cannot start: no prompt messages")
    _check_tools(context)
    return _start(prompt_list, context, config, signal, stream_fn)


def agent_loop_continue(
    context: AgentContext,
    config: AgentLoopConfig,
    signal: CancellationToken | None = None,
    stream_fn: StreamFn | None = None,
) -> EventStream[AgentEvent, list[AgentMessage]]:
    """
    Resume a run from ``context`` as it stands.

    The last message is what the model responds to; mapping it for the
    transport is ``convert_to_llm``'s job. Nothing is appended before the
    first generation, and pre-existing messages produce no events.

    Raises:
        ConfigError: ``context`` has no messages, or duplicate tool names.
        RuntimeError: No running event loop.
    """
    if not context.messages:
        raise ConfigError("Cannot continue: no messages in context")
    _check_tools(context)
    return _start([], context, config, signal, stream_fn)
