"""
Default transport: OpenAI-compatible chat completions, streamed.

``stream_openai`` is a ``StreamFn``. It maps the loop's messages to the chat
format, streams the completion and yields ``AssistantMessageEvent``s that
assemble one ``AssistantMessage``. It never raises: request and stream
failures become a terminal ``error`` event, and a cancelled token ends the
stream with ``stop_reason="aborted"``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any, TypedDict

import httpx

try:
    from openai import AsyncOpenAI  # type: ignore[import-not-found]
except ImportError:
    raise ImportError(
        "The OpenAI transport requires the 'openai' package. "
        "Install with: pip install openai"
    )

from agent_loop_engine.cancellation import CancellationToken, CancelledByToken
from agent_loop_engine.events import AssistantMessageEvent
from agent_loop_engine.logging import get_logger
from agent_loop_engine.messages import (
    AgentMessage,
    AssistantMessage,
    ImageContent,
    StopReason,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from agent_loop_engine.models import ModelDefinition, TokenUsage
from agent_loop_engine.utils.json_parse import parse_streaming_json, parse_tool_arguments

logger = get_logger("adapters.openai")


class OpenAIMessage(TypedDict, total=False):
    """OpenAI message format."""

    role: str
    content: str | list[dict[str, Any]] | None
    tool_calls: list[dict[str, Any]]
    tool_call_id: str


FINISH_REASONS: dict[str, StopReason] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "content_filter": "error",
}


def create_client(model: ModelDefinition, api_key: str | None = None) -> AsyncOpenAI:
    """Create an OpenAI client for ``model``."""
    # trust_env=False keeps proxy settings from the environment out of the way
    http_client = httpx.AsyncClient(
        trust_env=False,
        timeout=httpx.Timeout(300.0, connect=30.0),
    )
    return AsyncOpenAI(base_url=model.base_url, api_key=api_key, http_client=http_client)


# ---------------------------------------------------------------------------
# Request mapping
# ---------------------------------------------------------------------------


def _user_content(message: UserMessage) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str):
        return message.content
    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, TextContent):
            parts.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageContent):
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{block.mime_type};base64,{block.data}"},
                }
            )
    return parts


def build_openai_messages(
    system_prompt: str, messages: list[AgentMessage]
) -> list[OpenAIMessage]:
    """Map recognized messages to the chat format; anything else is dropped."""
    result: list[OpenAIMessage] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})

    for msg in messages:
        if isinstance(msg, UserMessage):
            result.append({"role": "user", "content": _user_content(msg)})
        elif isinstance(msg, AssistantMessage):
            # Failed generations may hold half-formed tool calls
            if msg.stop_reason in ("error", "aborted"):
                continue
            entry: OpenAIMessage = {"role": "assistant", "content": msg.text or None}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in msg.tool_calls
                ]
            result.append(entry)
        elif isinstance(msg, ToolResultMessage):
            text = msg.text
            if any(isinstance(b, ImageContent) for b in msg.content):
                text = f"{text}\n(image output omitted)" if text else "(image output omitted)"
            result.append(
                {"role": "tool", "tool_call_id": msg.tool_call_id, "content": text or "(no output)"}
            )
        else:
            logger.debug("Dropping message with unsupported role: %s", getattr(msg, "role", None))
    return result


def _apply_usage(output: AssistantMessage, usage: Any, model: ModelDefinition) -> None:
    details = getattr(usage, "prompt_tokens_details", None)
    cached = (getattr(details, "cached_tokens", None) or 0) if details else 0
    output.usage = TokenUsage(
        input_tokens=(usage.prompt_tokens or 0) - cached,
        output_tokens=usage.completion_tokens or 0,
        cache_read_tokens=cached,
    )
    output.usage.calculate_cost(model.cost)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class _BlockTracker:
    """Keeps the open content block and emits start/end events around it."""

    def __init__(self, output: AssistantMessage) -> None:
        self.output = output
        self.current: TextContent | ThinkingContent | ToolCall | None = None
        self.current_index = -1  # content index of the open block
        self.raw_args: dict[int, str] = {}  # content index -> argument text
        self.tool_indexes: dict[int, int] = {}  # OpenAI tool index -> content index

    def _open(self, block: TextContent | ThinkingContent | ToolCall) -> int:
        self.output.content.append(block)
        self.current = block
        self.current_index = len(self.output.content) - 1
        return self.current_index

    def close(self) -> list[AssistantMessageEvent]:
        block, idx = self.current, self.current_index
        self.current, self.current_index = None, -1
        if block is None:
            return []
        if isinstance(block, TextContent):
            return [AssistantMessageEvent(
                type="text_end", content_index=idx, content=block.text, partial=self.output
            )]
        if isinstance(block, ThinkingContent):
            return [AssistantMessageEvent(
                type="thinking_end", content_index=idx, content=block.thinking, partial=self.output
            )]
        block.arguments = parse_tool_arguments(self.raw_args.get(idx, ""))
        return [AssistantMessageEvent(
            type="toolcall_end", content_index=idx, tool_call=block, partial=self.output
        )]

    def text(self, delta: str) -> list[AssistantMessageEvent]:
        events: list[AssistantMessageEvent] = []
        if not isinstance(self.current, TextContent):
            events += self.close()
            idx = self._open(TextContent())
            events.append(AssistantMessageEvent(
                type="text_start", content_index=idx, partial=self.output
            ))
        self.current.text += delta
        events.append(AssistantMessageEvent(
            type="text_delta",
            content_index=self.current_index,
            delta=delta,
            partial=self.output,
        ))
        return events

    def thinking(self, delta: str) -> list[AssistantMessageEvent]:
        events: list[AssistantMessageEvent] = []
        if not isinstance(self.current, ThinkingContent):
            events += self.close()
            idx = self._open(ThinkingContent())
            events.append(AssistantMessageEvent(
                type="thinking_start", content_index=idx, partial=self.output
            ))
        self.current.thinking += delta
        events.append(AssistantMessageEvent(
            type="thinking_delta",
            content_index=self.current_index,
            delta=delta,
            partial=self.output,
        ))
        return events

    def tool_call(self, tc_delta: Any) -> list[AssistantMessageEvent]:
        events: list[AssistantMessageEvent] = []
        function = tc_delta.function
        if tc_delta.index not in self.tool_indexes:
            events += self.close()
            block = ToolCall(
                id=tc_delta.id or "",
                name=(function.name if function and function.name else ""),
            )
            start = self._open(block)
            self.tool_indexes[tc_delta.index] = start
            self.raw_args[start] = ""
            events.append(AssistantMessageEvent(
                type="toolcall_start", content_index=start, partial=self.output
            ))

        idx = self.tool_indexes[tc_delta.index]
        block = self.output.content[idx]
        if tc_delta.id and not block.id:
            block.id = tc_delta.id
        if function and function.arguments:
            self.raw_args[idx] += function.arguments
            block.arguments = parse_streaming_json(self.raw_args[idx])
            events.append(AssistantMessageEvent(
                type="toolcall_delta",
                content_index=idx,
                delta=function.arguments,
                partial=self.output,
            ))
        return events


_STREAM_DONE = object()


async def _next_chunk(iterator: Any) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _STREAM_DONE


async def _until_cancelled(
    awaitable: Any, signal: CancellationToken, watcher: asyncio.Future[Any]
) -> Any:
    """Await ``awaitable``, giving up as soon as ``signal`` is cancelled."""
    work = asyncio.ensure_future(awaitable)
    try:
        await asyncio.wait([work, watcher], return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not work.done():
            work.cancel()
            await asyncio.wait([work])
    if work.cancelled():
        raise CancelledByToken(signal.reason)
    return work.result()


async def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None) or getattr(stream, "aclose", None)
    if close is None:
        return
    try:
        result = close()
        if asyncio.iscoroutine(result) or asyncio.isfuture(result):
            await result
    except Exception as e:
        logger.debug("Error closing OpenAI stream: %s", e)


async def stream_openai(
    model: ModelDefinition,
    context: Any,
    options: Any,
    client: AsyncOpenAI | None = None,
) -> AsyncIterator[AssistantMessageEvent]:
    """
    Stream a chat completion as ``AssistantMessageEvent``s.

    Args:
        model: Target model; ``base_url`` and ``cost`` are honored.
        context: ``LlmContext`` with system prompt, messages and tools.
        options: ``StreamOptions``; cancelling ``signal`` interrupts the
            pending request or chunk read,
            ``extra`` is merged into the request (temperature, max_tokens, ...).
        client: Reuse an existing client instead of creating one per call.
    """
    output = AssistantMessage(api=model.api, provider=model.provider, model=model.id)
    owns_client = client is None
    signal = options.signal
    stream: Any = None
    watcher: asyncio.Future[Any] | None = None

    yield AssistantMessageEvent(type="start", partial=output)

    try:
        if client is None:
            client = create_client(model, options.api_key)

        request_kwargs: dict[str, Any] = {
            "model": model.id,
            "messages": build_openai_messages(context.system_prompt, context.messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if context.tools:
            request_kwargs["tools"] = [t.definition() for t in context.tools]
        request_kwargs.update(options.extra)

        signal.raise_if_cancelled()
        watcher = asyncio.ensure_future(signal.wait())
        stream = await _until_cancelled(
            client.chat.completions.create(**request_kwargs), signal, watcher
        )
        iterator = stream.__aiter__()

        blocks = _BlockTracker(output)
        finish_reason: str | None = None

        while True:
            chunk = await _until_cancelled(_next_chunk(iterator), signal, watcher)
            if chunk is _STREAM_DONE:
                break
            signal.raise_if_cancelled()

            if getattr(chunk, "usage", None):
                _apply_usage(output, chunk.usage, model)
            if not chunk.choices:
                continue

            choice = chunk.choices[0]
            delta = choice.delta

            reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
            if reasoning:
                for event in blocks.thinking(reasoning):
                    yield event
            if delta.content:
                for event in blocks.text(delta.content):
                    yield event
            for tc_delta in delta.tool_calls or []:
                for event in blocks.tool_call(tc_delta):
                    yield event

            if choice.finish_reason is not None:
                finish_reason = choice.finish_reason

        signal.raise_if_cancelled()
        for event in blocks.close():
            yield event

        output.stop_reason = FINISH_REASONS.get(finish_reason or "stop", "stop")
        if output.stop_reason == "error":
            output.error_message = f"Generation stopped: {finish_reason}"
            yield AssistantMessageEvent(type="error", reason="error", message=output)
            return
        if output.tool_calls and output.stop_reason == "stop":
            output.stop_reason = "tool_use"
        yield AssistantMessageEvent(type="done", reason=output.stop_reason, message=output)

    except Exception as e:
        output.stop_reason = "aborted" if signal.cancelled else "error"
        output.error_message = str(e) or type(e).__name__
        if output.stop_reason == "error":
            logger.warning("OpenAI stream failed: %s", output.error_message)
        yield AssistantMessageEvent(type="error", reason=output.stop_reason, message=output)
    finally:
        if watcher is not None:
            watcher.cancel()
        if stream is not None and signal.cancelled:
            await _close_stream(stream)
        if owns_client and client is not None:
            await client.close()
