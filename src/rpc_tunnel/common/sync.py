"""Shutdown coordination primitives shared by the two pumps of a tunnel."""

import asyncio
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class FirstErrorSlot(Generic[T]):
    """Single-capacity slot that keeps only the first value offered to it.

    Offering never blocks: once the slot is full, later values are discarded.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=1)
        self._value: T | None = None

    def offer(self, value: T) -> bool:
        """Record value if the slot is empty.

        Returns:
            True if value was recorded, False if another value got there first
        """
        try:
            self._queue.put_nowait(value)
        except asyncio.QueueFull:
            return False
        self._value = value
        return True

    def full(self) -> bool:
        """Check if a value has been recorded"""
        return self._queue.full()

    @property
    def value(self) -> T | None:
        """The recorded value, or None if nothing was offered yet"""
        return self._value

    async def wait(self) -> T:
        """Wait until a value is recorded and return it without consuming it"""
        if self._value is not None:
            return self._value
        value = await self._queue.get()
        # put it back so the slot stays full for late offers
        self._queue.put_nowait(value)
        return value


class CancellationToken:
    """Per-tunnel cancellation signal, triggered at most once.

    Callbacks registered with add_callback run exactly once, on the first
    call to cancel(). Registering after cancellation runs the callback
    immediately.
    """

    def __init__(self, name: str = "tunnel") -> None:
        self.name = name
        self._cancelled = False
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], Any]) -> None:
        """Register a callback to run when the token is cancelled"""
        if self._cancelled:
            self._run_callback(callback)
            return
        self._callbacks.append(callback)

    def cancel(self) -> bool:
        """Trigger the token.

        Returns:
            True on the first call, False if the token was already cancelled
        """
        if self._cancelled:
            return False
        self._cancelled = True
        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback)

        logger.debug("Cancellation token triggered", token=self.name)
        return True

    async def wait(self) -> None:
        """Wait until the token is cancelled"""
        await self._event.wait()

    def _run_callback(self, callback: Callable[[], Any]) -> None:
        try:
            callback()
        except Exception as e:
            logger.error(
                "Cancellation callback failed", token=self.name, error=str(e)
            )


class OnceCloser:
    """Wraps a close operation so that only the first call reaches it."""

    def __init__(self, close: Callable[[], Any], name: str = "resource") -> None:
        self._close = close
        self.name = name
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> bool:
        """Close the wrapped resource.

        Returns:
            True if this call closed the resource, False if it was already closed
        """
        if self._closed:
            return False
        self._closed = True
        try:
            self._close()
        except Exception as e:
            logger.warning("Error closing resource", resource=self.name, error=str(e))
        return True
