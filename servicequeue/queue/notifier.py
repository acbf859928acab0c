from __future__ import annotations

import logging

from .events import DeltaEvent, StateEvent, TicketPayload
from .models import ServiceSnapshot
from .registry import SubscriptionRegistry
from .repository import QueueRepository, QueueTransaction

logger = logging.getLogger(__name__)


async def load_snapshot(tx: QueueTransaction, service_id: int) -> ServiceSnapshot | None:
    """Read a service's current ticket, oldest waiting ticket and waiting count."""

    service = await tx.get_service(service_id)
    if service is None:
        return None
    current = None
    if service.current_ticket_id is not None:
        current = await tx.get_ticket(service.current_ticket_id)
    upcoming = await tx.oldest_waiting(service_id)
    waiting = await tx.count_waiting(service_id)
    return ServiceSnapshot(service=service, current=current, next=upcoming, waiting=waiting)


def snapshot_event(snapshot: ServiceSnapshot | None) -> StateEvent:
    if snapshot is None:
        return StateEvent(current=None, next=None, waiting=0)
    return StateEvent(
        current=TicketPayload.from_ticket(snapshot.current),
        next=TicketPayload.from_ticket(snapshot.next),
        waiting=snapshot.waiting,
    )


class LiveStateNotifier:
    """Fan committed transitions out to a service's subscribers.

    Each delta is enriched with a freshly counted ``waiting`` value and followed by
    a full ``STATE`` snapshot. Store failures degrade the output, never raise.
    """

    def __init__(self, repository: QueueRepository, registry: SubscriptionRegistry) -> None:
        self._repository = repository
        self._registry = registry

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    async def notify(self, service_id: int, event: DeltaEvent) -> None:
        try:
            async with self._repository.read() as tx:
                waiting = await tx.count_waiting(service_id)
        except Exception:
            logger.warning("Waiting count failed for service %s; sending raw %s", service_id, event.type, exc_info=True)
            self._registry.publish(service_id, event)
            return

        self._registry.publish(service_id, event.model_copy(update={"waiting": waiting}))
        await self.publish_state(service_id)

    async def publish_state(self, service_id: int) -> StateEvent | None:
        try:
            state = await self.current_state(service_id)
        except Exception:
            logger.warning("Snapshot for service %s skipped", service_id, exc_info=True)
            return None
        self._registry.publish(service_id, state)
        return state

    async def current_state(self, service_id: int) -> StateEvent:
        async with self._repository.read() as tx:
            snapshot = await load_snapshot(tx, service_id)
        return snapshot_event(snapshot)
