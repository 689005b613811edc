"""
Per-chunk moderation of streamed assistant text.

The driver feeds every text increment of the in-flight generation to a
``StreamModerator``; the moderator calls the configured handler with the
chunk and the text accumulated so far and returns its decision. The driver,
not the handler, performs the abort.
"""

from __future__ import annotations

import inspect

from agent_loop_engine.events import StreamTextEvent, StreamTextHandler, StreamTextResult
from agent_loop_engine.logging import get_logger

logger = get_logger("moderator")

_CONTINUE = StreamTextResult.continue_()


class StreamModerator:
    """
    Accumulates text for one generation and consults the handler per chunk.

    Args:
        handler: Synchronous ``(StreamTextEvent) -> StreamTextResult | None``.
            ``None`` (no handler) means always continue.
        max_aborts: Aborts honored over the moderator's lifetime. Once
            reached, further abort decisions are ignored. ``None`` means
            unbounded.
    """

    def __init__(
        self,
        handler: StreamTextHandler | None = None,
        max_aborts: int | None = None,
    ) -> None:
        self._handler = handler
        self._max_aborts = max_aborts
        self._accumulated = ""
        self._aborts = 0

    @property
    def accumulated_text(self) -> str:
        return self._accumulated

    @property
    def abort_count(self) -> int:
        return self._aborts

    def reset(self) -> None:
        """Start a new generation. Call before every transport invocation."""
        self._accumulated = ""

    def feed(self, chunk: str) -> StreamTextResult:
        self._accumulated += chunk
        if self._handler is None:
            return _CONTINUE

        result = self._handler(
            StreamTextEvent(chunk=chunk, accumulated_text=self._accumulated)
        )
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError("Stream text handlers must be synchronous")
        if result is None:
            return _CONTINUE
        if not isinstance(result, StreamTextResult):
            raise TypeError(
                f"Stream text handler returned {type(result).__name__}; "
                "expected StreamTextResult or None"
            )
        if not result.is_abort:
            return result

        if self._max_aborts is not None and self._aborts >= self._max_aborts:
            logger.warning(
                "Ignoring stream abort: limit of %d aborts reached", self._max_aborts
            )
            return _CONTINUE
        self._aborts += 1
        return result
