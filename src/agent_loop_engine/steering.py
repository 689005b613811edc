"""
Steering gate: polls for externally queued messages during a tool phase.

The first non-empty poll in a phase interrupts it. From then on every
remaining tool call is skipped and the hook is not polled again until the
next phase.
"""

from __future__ import annotations

from agent_loop_engine.config import MessageSource
from agent_loop_engine.logging import get_logger
from agent_loop_engine.messages import AgentMessage

logger = get_logger("steering")


class SteeringGate:
    def __init__(self, get_steering_messages: MessageSource | None = None) -> None:
        self._source = get_steering_messages
        self._interrupted = False
        self._queued: list[AgentMessage] = []

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def begin_phase(self) -> None:
        self._interrupted = False
        self._queued = []

    async def poll(self) -> bool:
        """Poll before a tool call. Returns True if the phase is interrupted."""
        if self._interrupted or self._source is None:
            return self._interrupted
        messages = list(await self._source())
        if messages:
            logger.debug("Steering interrupted tool phase with %d message(s)", len(messages))
            self._queued.extend(messages)
            self._interrupted = True
        return self._interrupted

    def take_queued(self) -> list[AgentMessage]:
        """Return and forget the messages that interrupted the phase."""
        queued, self._queued = self._queued, []
        return queued

    async def poll_between_turns(self) -> list[AgentMessage]:
        """Poll outside a tool phase; messages are returned, not queued."""
        if self._source is None:
            return []
        return list(await self._source())
