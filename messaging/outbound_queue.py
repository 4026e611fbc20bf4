"""
Outbound Queue

Buffers messages while the WhatsApp session is not ready.
Messages are handed back in enqueue order when the session becomes ready.
"""

from collections import deque
from collections.abc import Awaitable, Callable

from loguru import logger

from .models import OutboundMessage


class QueueFullError(Exception):
    """Raised when a bounded queue has no room left."""


class OutboundQueue:
    """
    FIFO buffer of messages awaiting a ready session.

    Unbounded unless max_size is given. Only the session drains it.
    """

    def __init__(self, max_size: int | None = None):
        self._items: deque[OutboundMessage] = deque()
        self._max_size = max_size
        self._seq = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def max_size(self) -> int | None:
        return self._max_size

    def enqueue(self, recipient: str, payload: str) -> OutboundMessage:
        """
        Append a message to the tail of the queue.

        Args:
            recipient: Normalized chat id
            payload: Message text

        Returns:
            The queued message

        Raises:
            QueueFullError: if the queue is bounded and full
        """
        if self._max_size is not None and len(self._items) >= self._max_size:
            raise QueueFullError(f"outbound queue full ({self._max_size} messages)")
        self._seq += 1
        message = OutboundMessage(
            recipient=recipient, payload=payload, enqueued_at=self._seq
        )
        self._items.append(message)
        logger.info(
            "Queued message for {}, queue size: {}", recipient, len(self._items)
        )
        return message

    def snapshot(self) -> list[OutboundMessage]:
        """Current contents, head first, without removing anything."""
        return list(self._items)

    def take_all(self) -> list[OutboundMessage]:
        """Remove and return every queued message in FIFO order."""
        items = list(self._items)
        self._items.clear()
        return items

    async def drain(
        self, dispatch: Callable[[OutboundMessage], Awaitable[None]]
    ) -> list[tuple[OutboundMessage, Exception]]:
        """
        Dispatch every queued message, head first, and clear the queue.

        Best-effort: a failure is logged and recorded, then the next message
        is attempted. Failed messages are not requeued.

        Returns:
            (message, error) pairs for the messages that failed
        """
        items = self.take_all()
        if not items:
            return []

        logger.info("Processing {} queued messages...", len(items))
        failures: list[tuple[OutboundMessage, Exception]] = []
        for message in items:
            try:
                await dispatch(message)
            except Exception as e:
                logger.error(
                    f"Failed to deliver queued message #{message.enqueued_at} "
                    f"to {message.recipient}: {e}"
                )
                failures.append((message, e))
        if failures:
            logger.warning(
                "Queue drain finished with {}/{} failures", len(failures), len(items)
            )
        return failures

    def clear(self) -> int:
        """
        Drop all queued messages.

        Returns:
            Number of messages that were dropped
        """
        dropped = len(self._items)
        self._items.clear()
        if dropped:
            logger.info("Dropped {} queued messages", dropped)
        return dropped
