"""
Status broadcast channel.

Each subscriber owns a bounded asyncio.Queue. Publishing never blocks: when a
subscriber falls behind, its oldest buffered event is dropped. There is no
replay buffer, so a subscriber that attaches late only sees later events and
has to poll the session for the current snapshot.
"""

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from loguru import logger

from .models import StatusEvent

StatusHandler = Callable[[StatusEvent], Awaitable[None] | None]

_CLOSED = object()


class Subscription:
    """A single subscriber's view of the broadcast channel."""

    def __init__(self, broadcaster: "StatusBroadcaster", maxsize: int):
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self._closed = False
        self.dropped = 0
        self.task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, event: StatusEvent) -> None:
        if self._closed:
            return
        # One slot is reserved for the close sentinel.
        if self._queue.qsize() >= self._maxsize:
            try:
                self._queue.get_nowait()
                self.dropped += 1
                logger.warning(
                    "Status subscriber lagging, dropped oldest event (total dropped={})",
                    self.dropped,
                )
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(event)

    async def get(self) -> StatusEvent:
        """Wait for the next event. Raises StopAsyncIteration once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel for other waiters.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    def get_nowait(self) -> StatusEvent | None:
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def close(self) -> None:
        """Detach from the broadcaster and wake any waiter."""
        if self._closed:
            return
        self._closed = True
        self._broadcaster._detach(self)
        while self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        if self.task and not self.task.done() and self.task is not asyncio.current_task():
            self.task.cancel()

    def __aiter__(self) -> AsyncIterator[StatusEvent]:
        return self

    async def __anext__(self) -> StatusEvent:
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class StatusBroadcaster:
    """Publish-subscribe channel for session status events."""

    def __init__(self, buffer_size: int = 100):
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self._buffer_size = buffer_size
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, buffer_size: int | None = None) -> Subscription:
        sub = Subscription(self, buffer_size or self._buffer_size)
        self._subscribers.append(sub)
        logger.debug("Status subscriber attached (total={})", len(self._subscribers))
        return sub

    def _detach(self, sub: Subscription) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            return
        logger.debug("Status subscriber detached (total={})", len(self._subscribers))

    def publish(self, event: StatusEvent) -> int:
        """Deliver an event to every current subscriber. Returns the fan-out count."""
        logger.debug("STATUS_EVENT: {}", event.kind)
        subscribers = list(self._subscribers)
        for sub in subscribers:
            sub._offer(event)
        return len(subscribers)

    def on_event(self, handler: StatusHandler) -> Subscription:
        """
        Run handler for every future event in a background task.

        Handler exceptions are logged and do not detach the subscription.
        Close the returned subscription to stop delivery.
        """
        sub = self.subscribe()

        async def _pump() -> None:
            async for event in sub:
                try:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"Status handler failed on {event.kind}: {e}")

        sub.task = asyncio.create_task(_pump())
        return sub

    def close(self) -> None:
        """Close every subscription."""
        for sub in list(self._subscribers):
            sub.close()
