"""
Linked cancellation tokens.

A ``CancellationSource`` owns a token and may be linked to any number of
parent tokens: cancelling a parent cancels the child synchronously, before
control returns to the caller of ``cancel()``. The loop builds one source per
run (linked to the caller's token) and one per transport invocation (linked
to the run source), closing each when it is no longer needed so parents do
not accumulate callbacks.

Example:
    outer = CancellationSource()
    with CancellationSource(outer.token) as call:
        outer.cancel("user pressed ctrl-c")
        assert call.token.cancelled
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from agent_loop_engine.logging import get_logger

logger = get_logger("cancellation")

CancelCallback = Callable[[Any], None]


class CancelledByToken(Exception):
    """Raised by :meth:`CancellationToken.raise_if_cancelled`."""

    def __init__(self, reason: Any = None) -> None:
        super().__init__(str(reason) if reason is not None else "Operation cancelled")
        self.reason = reason


class CancellationToken:
    """Read-only view of a :class:`CancellationSource`."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Any = None
        self._callbacks: list[CancelCallback] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Any:
        return self._reason

    def is_set(self) -> bool:
        """Alias of :attr:`cancelled`, matching ``asyncio.Event``."""
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledByToken(self._reason)

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """
        Run ``callback(reason)`` when the token is cancelled.

        If the token is already cancelled the callback runs immediately.
        Returns a function that removes the callback.
        """
        if self.cancelled:
            callback(self._reason)
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return remove

    def _cancel(self, reason: Any) -> bool:
        if self.cancelled:
            return False
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        return True


class CancellationSource:
    """Owner of a :class:`CancellationToken`, optionally linked to parents."""

    def __init__(self, *parents: CancellationToken | None) -> None:
        self._token = CancellationToken()
        self._unlinks: list[Callable[[], None]] = []
        for parent in parents:
            if parent is None:
                continue
            self._unlinks.append(parent.add_callback(self.cancel))

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def cancel(self, reason: Any = None) -> None:
        """Cancel the token (and every source linked below it)."""
        if self._token._cancel(reason):
            logger.debug("Cancellation requested: %s", reason)

    def close(self) -> None:
        """Detach from parent tokens. Safe to call more than once."""
        unlinks, self._unlinks = self._unlinks, []
        for unlink in unlinks:
            unlink()

    def __enter__(self) -> CancellationSource:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
