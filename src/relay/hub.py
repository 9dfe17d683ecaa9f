"""
In-process broadcast of encoded messages to WebSocket subscribers.

Every subscriber owns a bounded queue. Publishing never waits: when a
subscriber's queue is full its oldest message is discarded so the newest
telemetry always gets through (drop-oldest).

Both ``publish`` and ``subscribe`` must be called from the event loop thread.
"""

import asyncio
import itertools
import logging
from typing import Dict, List, Optional

from .exceptions import SubscriptionClosed


DEFAULT_CAPACITY = 100  # ~1 s of frames at 100 Hz

_CLOSED = object()


class Subscription:
    """
    A live registration against the hub.

    Iterate with ``async for message in subscription`` or call ``recv()``.
    Iteration ends once the subscription is closed and its queue drained.
    """

    def __init__(self, hub: "FanOutHub", subscriber_id: int, capacity: int):
        self.id = subscriber_id
        self.capacity = capacity
        self.dropped = 0
        self.delivered = 0
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of messages waiting to be received."""
        size = self._queue.qsize()
        return size - 1 if self._closed and size else size

    def _offer(self, message: str) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self.capacity:
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(message)

    def _terminate(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def recv(self) -> str:
        """
        Wait for the next message.

        Raises:
            SubscriptionClosed: Once the subscription is closed and drained
        """
        message = await self._queue.get()
        if message is _CLOSED:
            # Leave the marker for any later caller
            self._queue.put_nowait(_CLOSED)
            raise SubscriptionClosed(f"Subscription {self.id} is closed")
        self.delivered += 1
        return message

    def close(self) -> None:
        """Detach from the hub. Safe to call more than once."""
        self._hub.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> str:
        try:
            return await self.recv()
        except SubscriptionClosed:
            raise StopAsyncIteration

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Subscription(id={self.id}, pending={self.pending}, "
            f"dropped={self.dropped}, closed={self._closed})"
        )


class FanOutHub:
    """
    Single-producer, multi-consumer broadcast channel.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, logger: Optional[logging.Logger] = None):
        if capacity < 1:
            raise ValueError("Hub capacity must be at least 1")
        self.capacity = capacity
        self.logger = logger or logging.getLogger(__name__)
        self.published = 0
        self._subscribers: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """
        Register a new subscriber. Only messages published after this call
        are delivered to it.

        Raises:
            SubscriptionClosed: If the hub has been closed
        """
        if self._closed:
            raise SubscriptionClosed("Hub is closed")

        subscription = Subscription(self, next(self._ids), self.capacity)
        self._subscribers[subscription.id] = subscription
        self.logger.debug(
            f"Subscriber {subscription.id} attached ({len(self._subscribers)} active)"
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        removed = self._subscribers.pop(subscription.id, None)
        subscription._terminate()
        if removed is not None:
            self.logger.debug(
                f"Subscriber {subscription.id} detached "
                f"(dropped={subscription.dropped}, {len(self._subscribers)} active)"
            )

    def publish(self, message: str) -> int:
        """
        Offer a message to every current subscriber without waiting.

        Returns:
            int: Number of subscribers the message was offered to
        """
        if self._closed:
            return 0

        self.published += 1
        subscribers: List[Subscription] = list(self._subscribers.values())
        for subscription in subscribers:
            subscription._offer(message)
        return len(subscribers)

    def close(self) -> None:
        """End every subscription; further publishes are ignored."""
        if self._closed:
            return
        self._closed = True
        for subscription in list(self._subscribers.values()):
            subscription._terminate()
        self._subscribers.clear()
        self.logger.debug("Hub closed")
