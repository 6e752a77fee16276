"""In-process publish/subscribe hub for live progress streams."""

import asyncio
import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from itertools import count

_logger = logging.getLogger(__name__)

_ids = count(1)


class EndOfStream:
    """Marker delivered when a key has no further data."""


END_OF_STREAM = EndOfStream()


@dataclass(eq=False)
class Subscription:
    """One subscriber's mailbox for a subscription key."""

    key: Hashable
    mailbox: asyncio.Queue[dict[str, object] | EndOfStream]
    id: int = field(default_factory=lambda: next(_ids))
    closed: bool = False

    async def receive(self, timeout: float | None = None) -> dict[str, object] | EndOfStream:
        """Wait for the next message; raises ``TimeoutError`` when idle."""
        if timeout is None:
            return await self.mailbox.get()
        return await asyncio.wait_for(self.mailbox.get(), timeout)

    def deliver(self, message: dict[str, object] | EndOfStream) -> None:
        """Push a message; raises when the mailbox is closed or full."""
        if self.closed:
            raise ConnectionError(f"Subscription {self.id} is closed")
        self.mailbox.put_nowait(message)


@dataclass
class NotificationHub:
    """Fans messages out to every subscriber registered for a key."""

    mailbox_size: int = 256
    _subscribers: dict[Hashable, dict[int, Subscription]] = field(
        default_factory=dict, init=False, repr=False
    )

    def subscribe(self, key: Hashable) -> Subscription:
        """Register a new subscriber for a key."""
        subscription = Subscription(
            key=key, mailbox=asyncio.Queue(maxsize=self.mailbox_size)
        )
        self._subscribers.setdefault(key, {})[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscriber; drops the key once it has no subscribers."""
        subscription.closed = True
        subscribers = self._subscribers.get(subscription.key)
        if subscribers is None:
            return
        subscribers.pop(subscription.id, None)
        if not subscribers:
            self._subscribers.pop(subscription.key, None)

    def publish(self, key: Hashable, message: dict[str, object]) -> int:
        """Deliver a message to all subscribers of a key.

        Subscribers whose mailbox rejects the write are removed right away.
        Returns the number of successful deliveries.
        """
        subscribers = self._subscribers.get(key)
        if not subscribers:
            return 0
        delivered = 0
        for subscription in list(subscribers.values()):
            try:
                subscription.deliver(message)
                delivered += 1
            except (asyncio.QueueFull, ConnectionError):
                _logger.warning(
                    "Dropping subscriber %s for %s after failed write",
                    subscription.id,
                    key,
                )
                self.unsubscribe(subscription)
        return delivered

    def close_key(self, key: Hashable) -> None:
        """Signal end of stream to all subscribers of a key and forget it."""
        subscribers = self._subscribers.pop(key, {})
        for subscription in subscribers.values():
            try:
                subscription.deliver(END_OF_STREAM)
            except (asyncio.QueueFull, ConnectionError):
                pass
            subscription.closed = True

    def subscriber_count(self, key: Hashable) -> int:
        """Number of active subscribers for a key."""
        return len(self._subscribers.get(key, {}))

    def stats(self) -> dict[str, int]:
        """Return connection counts for monitoring."""
        return {
            "keys": len(self._subscribers),
            "connections": sum(len(subs) for subs in self._subscribers.values()),
        }
