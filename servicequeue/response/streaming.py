from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

from servicequeue.queue.events import HelloEvent, LiveEvent
from servicequeue.queue.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class StreamFormat(str, Enum):
    SSE = "sse"
    NDJSON = "ndjson"


class LiveStreamer:
    """Render a service channel as Server-Sent Events or newline-delimited JSON."""

    def __init__(
        self,
        *,
        keepalive_seconds: float = 25.0,
        stream_format: StreamFormat = StreamFormat.SSE,
    ) -> None:
        if keepalive_seconds <= 0:
            raise ValueError("keepalive_seconds must be greater than zero")

        self.keepalive_seconds = keepalive_seconds
        self.stream_format = stream_format

    @property
    def media_type(self) -> str:
        if self.stream_format is StreamFormat.NDJSON:
            return "application/x-ndjson"
        return "text/event-stream"

    def frame(self, event: LiveEvent) -> str:
        if self.stream_format is StreamFormat.NDJSON:
            return f"{event.to_json()}\n"
        return f"data: {event.to_json()}\n\n"

    def keepalive_frame(self) -> str:
        """Frame without payload that keeps proxies from closing an idle connection."""

        if self.stream_format is StreamFormat.NDJSON:
            return "\n"
        return ": ping\n\n"

    async def iter_frames(
        self,
        registry: SubscriptionRegistry,
        service_id: int,
        initial_state: Callable[[], Awaitable[LiveEvent]] | None = None,
    ) -> AsyncIterator[str]:
        """Attach to ``service_id`` and yield HELLO, the initial STATE, then live events.

        The subscription is released when the generator finishes, is closed or is
        cancelled by a client disconnect.
        """

        subscription = registry.subscribe(service_id)
        try:
            yield self.frame(HelloEvent())

            if initial_state is not None:
                try:
                    state = await initial_state()
                except Exception:
                    logger.warning("Initial snapshot for service %s failed", service_id, exc_info=True)
                else:
                    yield self.frame(state)

            while True:
                try:
                    event = await subscription.receive(timeout=self.keepalive_seconds)
                except TimeoutError:
                    yield self.keepalive_frame()
                    continue
                if event is None:
                    break
                yield self.frame(event)
        finally:
            subscription.close()
