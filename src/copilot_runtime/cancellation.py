"""Cancellation tokens for cooperative task interruption.

One token is threaded from the caller through the agent loop, the provider
stream and every tool execution of a run. Components check it at natural
breakpoints (stream chunk boundaries, before starting a tool, while waiting
for an approval decision) instead of being interrupted forcibly.

Key design:
- Token uses asyncio.Event internally for async-friendly waiting
- ``race()`` lets a suspension point give up as soon as cancellation fires
- ``CancellationToken.none()`` is a shared token that never cancels
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from .errors import CancellationError

logger = logging.getLogger("copilot_runtime.cancellation")

T = TypeVar("T")


@dataclass
class CancellationToken:
    """Mutable token for cooperative cancellation.

    Usage:
        token = CancellationToken()

        # In long-running operation:
        async for chunk in stream:
            token.raise_if_cancelled()
            process(chunk)

        # To cancel (from anywhere):
        token.cancel("user pressed stop")
    """

    _event: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _callbacks: list[Callable[[], Any]] = field(default_factory=list, init=False)
    _noop: bool = field(default=False, init=False, repr=False)
    reason: str | None = field(default=None, init=False)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        if self._noop:
            return False
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation (idempotent).

        Triggers all registered callbacks on the first call only.
        """
        if self._noop or self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for cb in self._callbacks:
            self._invoke(cb)

    async def wait(self) -> None:
        """Block until cancel() is called."""
        if self._noop:
            # Never resolves: this token never cancels.
            await asyncio.Future()
            return
        await self._event.wait()

    def on_cancel(self, callback: Callable[[], Any]) -> None:
        """Register callback for cancellation.

        Callback is invoked immediately if already cancelled.
        """
        if self._noop:
            return
        self._callbacks.append(callback)
        if self._event.is_set():
            self._invoke(callback)

    def raise_if_cancelled(self) -> None:
        """Raise CancellationError if cancelled.

        Raises:
            CancellationError: If cancellation was requested.
        """
        if self.is_cancelled:
            raise CancellationError(self._message())

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancellation fires first.

        The awaitable is cancelled when the token wins.

        Raises:
            CancellationError: If cancellation was requested before the
                awaitable finished.
        """
        if self.is_cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancellationError(self._message())
        if self._noop:
            return await awaitable
        task = asyncio.ensure_future(awaitable)

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise CancellationError(self._message())

    @classmethod
    def none(cls) -> CancellationToken:
        """Return the shared no-op token (never cancels)."""
        global _NEVER_CANCEL
        if _NEVER_CANCEL is None:
            token = cls()
            token._noop = True
            _NEVER_CANCEL = token
        return _NEVER_CANCEL

    def _message(self) -> str:
        if self.reason:
            return f"Operation was cancelled: {self.reason}"
        return "Operation was cancelled"

    @staticmethod
    def _invoke(callback: Callable[[], Any]) -> None:
        try:
            callback()
        except Exception:
            # A broken callback must not keep the token from cancelling.
            logger.exception("Cancellation callback failed")


_NEVER_CANCEL: CancellationToken | None = None


__all__ = ["CancellationToken", "CancellationError"]
