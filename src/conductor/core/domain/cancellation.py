"""Cooperative cancellation signal shared by one turn, workflow run or batch."""

import asyncio
from collections.abc import Callable

import structlog

from conductor.core.domain.errors import AbortError

logger = structlog.get_logger().bind(component="cancellation")


class CancellationToken:
    """
    A one-shot cancellation signal.

    Once cancelled it stays cancelled. Registered callbacks run exactly once,
    in registration order, when cancel() is first called (or immediately when
    registered on an already cancelled token). In-flight awaits are not
    interrupted; callers check the token at their suspension points.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by user") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        logger.info("cancellation.requested", reason=reason)
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        if self._event.is_set():
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AbortError(self.reason or "Operation cancelled by user")

    async def wait(self) -> None:
        await self._event.wait()
