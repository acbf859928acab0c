"""Per-service broadcast channels for live display subscribers."""

from __future__ import annotations

import asyncio
import logging
from threading import Lock
from typing import Dict, Set

from .events import LiveEvent

logger = logging.getLogger(__name__)

_END_OF_STREAM = object()


class Subscription:
    """One viewer attached to a service channel, fed through a bounded queue."""

    def __init__(self, registry: "SubscriptionRegistry", service_id: int, *, maxsize: int) -> None:
        self.service_id = service_id
        self.dropped = 0
        self._registry = registry
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def deliver(self, event: LiveEvent) -> None:
        """Queue ``event`` without waiting; the oldest pending event is dropped when full."""

        if self._ended:
            return
        self._put_nowait(event)

    async def receive(self, timeout: float | None = None) -> LiveEvent | None:
        """Return the next event, or ``None`` once the channel has ended.

        Raises ``TimeoutError`` when nothing arrives within ``timeout``; an event that
        arrives as the deadline passes stays queued for the next call.
        """

        async with asyncio.timeout(timeout):
            item = await self._queue.get()
        if item is _END_OF_STREAM:
            return None
        return item  # type: ignore[return-value]

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Detach from the registry. Safe to call more than once."""

        self._registry.unsubscribe(self)

    def _end(self) -> None:
        if self._ended:
            return
        self._ended = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_END_OF_STREAM)

    def _put_nowait(self, item: object) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:  # pragma: no cover - raced with a reader
                    continue
                self.dropped += 1
                if self.dropped == 1:
                    logger.warning(
                        "Subscriber of service %s is falling behind; dropping its oldest events",
                        self.service_id,
                    )

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class SubscriptionRegistry:
    """Process-wide map of service id to attached subscriptions.

    ``subscribe``, ``unsubscribe`` and ``publish`` are the only mutating operations.
    Publishing never awaits, so a stalled viewer cannot hold up the others.
    """

    def __init__(self, *, queue_size: int = 100) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be greater than zero")
        self._queue_size = queue_size
        self._subscribers: Dict[int, Set[Subscription]] = {}
        self._lock = Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, service_id: int) -> Subscription:
        subscription = Subscription(self, service_id, maxsize=self._queue_size)
        with self._lock:
            if self._closed:
                subscription._end()
                return subscription
            self._subscribers.setdefault(service_id, set()).add(subscription)
        logger.debug("Subscriber attached to service %s", service_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            subscribers = self._subscribers.get(subscription.service_id)
            if not subscribers or subscription not in subscribers:
                return False
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.service_id]
        subscription._end()
        if subscription.dropped:
            logger.warning(
                "Subscriber of service %s detached after dropping %d event(s)",
                subscription.service_id,
                subscription.dropped,
            )
        else:
            logger.debug("Subscriber detached from service %s", subscription.service_id)
        return True

    def publish(self, service_id: int, event: LiveEvent) -> int:
        """Deliver ``event`` to every current subscriber of ``service_id``."""

        with self._lock:
            if self._closed:
                return 0
            targets = tuple(self._subscribers.get(service_id, ()))
        for subscription in targets:
            subscription.deliver(event)
        return len(targets)

    def subscriber_count(self, service_id: int | None = None) -> int:
        with self._lock:
            if service_id is not None:
                return len(self._subscribers.get(service_id, ()))
            return sum(len(subscribers) for subscribers in self._subscribers.values())

    def close(self) -> None:
        """End every channel; later publishes are ignored."""

        with self._lock:
            self._closed = True
            subscriptions = [sub for subscribers in self._subscribers.values() for sub in subscribers]
            self._subscribers.clear()
        for subscription in subscriptions:
            subscription._end()
