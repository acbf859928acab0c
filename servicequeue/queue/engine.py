from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from opentelemetry import trace

from .errors import ConflictError, ForbiddenError, NotFoundError, QueueValidationError, UpstreamError
from .events import DeltaEvent, NextEvent, RecallEvent, ServedEvent, SkipEvent, TicketPayload
from .models import (
    AdvanceResult,
    CallResult,
    FinishResult,
    Service,
    ServiceSnapshot,
    ServiceStats,
    ServiceSummary,
    Ticket,
    TicketLookup,
)
from .notifier import LiveStateNotifier, load_snapshot
from .numbering import as_aware, format_display_no, local_day_window
from .repository import QueueRepository, QueueTransaction, RecordNotFoundError
from .state import PointerEffect, TicketEvent, TicketStateMachine, TicketStatus, Transition

if TYPE_CHECKING:
    from servicequeue.identity.university import IdentityLookup

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class VisitorMode(str, Enum):
    GUEST = "guest"
    STUDENT = "student"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_token() -> str:
    return str(uuid.uuid4())


class ServiceLocks:
    """One ``asyncio.Lock`` per service serializing mutations inside this process."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def for_service(self, service_id: int) -> asyncio.Lock:
        lock = self._locks.get(service_id)
        if lock is None:
            lock = self._locks.setdefault(service_id, asyncio.Lock())
        return lock


class QueueEngine:
    """Atomic queue transitions plus the read models displays and staff need.

    Every mutation runs under the service's lock and inside one store transaction
    that also row-locks the service. Notifications are sent after commit.
    """

    def __init__(
        self,
        repository: QueueRepository,
        *,
        notifier: LiveStateNotifier | None = None,
        identity: "IdentityLookup | None" = None,
        locks: ServiceLocks | None = None,
        timezone_name: str = "Asia/Bangkok",
        number_width: int = 3,
        clock: Callable[[], datetime] = _utcnow,
        token_factory: Callable[[], str] = _new_token,
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._identity = identity
        self._locks = locks or ServiceLocks()
        self._timezone_name = timezone_name
        self._number_width = number_width
        self._clock = clock
        self._token_factory = token_factory

    # -------------------- staff transitions --------------------

    async def call_next(self, service_id: int) -> CallResult:
        with tracer.start_as_current_span("queue.call_next") as span:
            span.set_attribute("queue.service_id", service_id)
            async with self._locks.for_service(service_id):
                async with self._repository.transaction() as tx:
                    service = await self._lock_service(tx, service_id)
                    if service.current_ticket_id is not None:
                        current = await tx.get_ticket(service.current_ticket_id)
                        if current is not None and current.status == TicketStatus.CALLED:
                            raise ConflictError(
                                f"Ticket {current.display_no} is still being served",
                                current_status=current.status.value,
                            )
                    called = await self._call_oldest(tx, service, self._clock())
                    upcoming = await tx.oldest_waiting(service_id)

            logger.info("Service %s called %s", service_id, called.display_no)
            await self._notify(
                service_id,
                NextEvent(current=TicketPayload.from_ticket(called), next=TicketPayload.from_ticket(upcoming)),
            )
            return CallResult(current=called, next=upcoming)

    async def recall(self, service_id: int) -> Ticket:
        with tracer.start_as_current_span("queue.recall") as span:
            span.set_attribute("queue.service_id", service_id)
            async with self._repository.read() as tx:
                service = await self._require_service(tx, service_id)
                current = await self._require_current(tx, service)
            TicketStateMachine.apply(current.status, TicketEvent.RECALL)

            logger.info("Service %s recalled %s", service_id, current.display_no)
            await self._notify(service_id, RecallEvent(current=TicketPayload.from_ticket(current)))
            return current

    async def serve(self, service_id: int) -> FinishResult:
        result = await self._finish(service_id, TicketEvent.SERVE)
        await self._notify(
            service_id,
            ServedEvent(
                served=TicketPayload.from_ticket(result.finished),
                next=TicketPayload.from_ticket(result.next),
            ),
        )
        return result

    async def skip(self, service_id: int) -> FinishResult:
        result = await self._finish(service_id, TicketEvent.SKIP)
        await self._notify(service_id, SkipEvent(current=TicketPayload.from_ticket(result.finished)))
        return result

    async def serve_and_next(self, service_id: int) -> AdvanceResult:
        result = await self._advance(service_id, TicketEvent.SERVE)
        await self._notify(
            service_id,
            ServedEvent(
                served=TicketPayload.from_ticket(result.finished),
                next=TicketPayload.from_ticket(result.next),
            ),
        )
        await self._notify_called(service_id, result)
        return result

    async def skip_and_next(self, service_id: int) -> AdvanceResult:
        result = await self._advance(service_id, TicketEvent.SKIP)
        await self._notify(service_id, SkipEvent(current=TicketPayload.from_ticket(result.finished)))
        await self._notify_called(service_id, result)
        return result

    async def cancel(self, ticket_id: int) -> Ticket:
        """Staff cancel; rejects tickets that already reached a terminal status."""

        with tracer.start_as_current_span("queue.cancel") as span:
            span.set_attribute("queue.ticket_id", ticket_id)
            async with self._repository.read() as tx:
                ticket = await tx.get_ticket(ticket_id)
            if ticket is None:
                raise NotFoundError("Ticket not found")
            TicketStateMachine.apply(ticket.status, TicketEvent.CANCEL)

            canceled, transition = await self._cancel_locked(ticket)

            if transition.source == TicketStatus.CALLED:
                await self._notify(canceled.service_id, SkipEvent(current=TicketPayload.from_ticket(canceled)))
            else:
                await self._publish_state(canceled.service_id)
            return canceled

    # -------------------- visitor operations --------------------

    async def enqueue(
        self,
        service_code: str,
        mode: VisitorMode | str,
        visitor_id: str | None = None,
    ) -> Ticket:
        with tracer.start_as_current_span("queue.enqueue") as span:
            if not service_code:
                raise QueueValidationError("serviceCode required")
            try:
                visitor_mode = VisitorMode(mode)
            except ValueError as exc:
                raise QueueValidationError("mode must be 'guest' or 'student'") from exc
            if visitor_mode is VisitorMode.STUDENT and not visitor_id:
                raise QueueValidationError("studentId required for student mode")
            span.set_attribute("queue.service_code", service_code)

            async with self._repository.read() as tx:
                service = await tx.get_service_by_code(service_code)
            service = self._ensure_accepting(service)

            name: str | None = None
            student_id: str | None = None
            if visitor_mode is VisitorMode.STUDENT:
                if self._identity is None:
                    raise UpstreamError("Student directory is not configured")
                identity = await self._identity.lookup(visitor_id or "")
                name = identity.display_name
                student_id = identity.id

            async with self._locks.for_service(service.id):
                async with self._repository.transaction() as tx:
                    locked = await tx.lock_service(service.id)
                    locked = self._ensure_accepting(locked)
                    now = self._clock()
                    start, end, issued_on = local_day_window(now, self._timezone_name)
                    number = await tx.count_created_between(locked.id, start, end) + 1
                    ticket = await tx.create_ticket(
                        service_id=locked.id,
                        number=number,
                        issued_on=issued_on,
                        display_no=format_display_no(locked.code, number, width=self._number_width),
                        token=self._token_factory(),
                        created_at=now,
                        name=name,
                        student_id=student_id,
                    )

            logger.info("Issued %s for service %s (%s)", ticket.display_no, ticket.service_id, visitor_mode.value)
            await self._publish_state(ticket.service_id)
            return ticket

    async def get_ticket_by_token(self, token: str) -> TicketLookup:
        async with self._repository.read() as tx:
            ticket = await tx.get_ticket_by_token(token)
            if ticket is None:
                raise NotFoundError("Ticket not found")
            waiting_ahead = await tx.count_ahead(ticket)
            service = await tx.get_service(ticket.service_id)
        return TicketLookup(
            ticket=ticket,
            waiting_ahead=waiting_ahead,
            current_ticket_id=None if service is None else service.current_ticket_id,
        )

    async def cancel_by_token(self, token: str) -> Ticket | None:
        """Visitor cancel; succeeds for unknown tokens and already closed tickets."""

        with tracer.start_as_current_span("queue.cancel_by_token"):
            async with self._repository.read() as tx:
                ticket = await tx.get_ticket_by_token(token)
            if ticket is None or TicketStateMachine.is_terminal(ticket.status):
                return ticket
            try:
                canceled, _ = await self._cancel_locked(ticket)
            except ConflictError:
                # Reached a terminal status while we waited for the lock.
                async with self._repository.read() as tx:
                    return await tx.get_ticket(ticket.id)
            await self._publish_state(canceled.service_id)
            return canceled

    # -------------------- read models --------------------

    async def get_service_snapshot(self, service_id: int) -> ServiceSnapshot:
        async with self._repository.read() as tx:
            snapshot = await load_snapshot(tx, service_id)
        if snapshot is None:
            raise NotFoundError("Service not found")
        return snapshot

    async def get_service_by_code(self, code: str) -> Service:
        if not code:
            raise QueueValidationError("code required")
        async with self._repository.read() as tx:
            service = await tx.get_service_by_code(code)
        if service is None:
            raise NotFoundError("Service not found")
        return service

    async def list_services_with_waiting_counts(self) -> list[ServiceSummary]:
        async with self._repository.read() as tx:
            services = await tx.list_services()
            counts = await tx.waiting_counts()
        return [ServiceSummary(service=service, waiting=counts.get(service.id, 0)) for service in services]

    async def get_service_stats(
        self,
        service_id: int,
        *,
        range_from: datetime | None = None,
        range_to: datetime | None = None,
    ) -> ServiceStats:
        now = self._clock()
        if range_from is None:
            start = local_day_window(now, self._timezone_name)[0]
        else:
            start = as_aware(range_from, self._timezone_name)
        end = now if range_to is None else as_aware(range_to, self._timezone_name)
        if start > end:
            raise QueueValidationError("'from' must not be later than 'to'")

        async with self._repository.read() as tx:
            await self._require_service(tx, service_id)
            tickets = await tx.tickets_created_between(service_id, start, end)

        stats = ServiceStats(service_id=service_id, range_from=start, range_to=end)
        wait_total = service_total = 0.0
        wait_count = service_count = 0
        for ticket in tickets:
            stats.counts.total += 1
            attribute = ticket.status.value.lower()
            setattr(stats.counts, attribute, getattr(stats.counts, attribute) + 1)
            if ticket.called_at is not None:
                wait_total += (ticket.called_at - ticket.created_at).total_seconds() * 1000
                wait_count += 1
                if ticket.served_at is not None:
                    service_total += (ticket.served_at - ticket.called_at).total_seconds() * 1000
                    service_count += 1
        stats.avg_wait_ms = round(wait_total / wait_count) if wait_count else 0
        stats.avg_service_ms = round(service_total / service_count) if service_count else 0
        return stats

    async def set_service_open(self, service_id: int, is_open: bool) -> Service:
        async with self._locks.for_service(service_id):
            async with self._repository.transaction() as tx:
                try:
                    service = await tx.set_service_open(service_id, is_open)
                except RecordNotFoundError as exc:
                    raise NotFoundError("Service not found") from exc
        logger.info("Service %s is now %s", service_id, "open" if is_open else "closed")
        return service

    # -------------------- internals --------------------

    async def _finish(self, service_id: int, event: TicketEvent) -> FinishResult:
        with tracer.start_as_current_span(f"queue.{event.value}") as span:
            span.set_attribute("queue.service_id", service_id)
            async with self._locks.for_service(service_id):
                async with self._repository.transaction() as tx:
                    service = await self._lock_service(tx, service_id)
                    finished = await self._close_current(tx, service, event, self._clock())
                    upcoming = await tx.oldest_waiting(service_id)
            logger.info("Service %s %s %s", service_id, finished.status.value.lower(), finished.display_no)
            return FinishResult(finished=finished, next=upcoming)

    async def _advance(self, service_id: int, event: TicketEvent) -> AdvanceResult:
        with tracer.start_as_current_span(f"queue.{event.value}_and_next") as span:
            span.set_attribute("queue.service_id", service_id)
            async with self._locks.for_service(service_id):
                async with self._repository.transaction() as tx:
                    service = await self._lock_service(tx, service_id)
                    now = self._clock()
                    finished = await self._close_current(tx, service, event, now)
                    try:
                        called: Ticket | None = await self._call_oldest(tx, service, now)
                    except NotFoundError:
                        called = None
                    upcoming = await tx.oldest_waiting(service_id) if called is not None else None

            logger.info(
                "Service %s %s %s, now serving %s",
                service_id,
                finished.status.value.lower(),
                finished.display_no,
                called.display_no if called else "nobody",
            )
            return AdvanceResult(finished=finished, current=called, next=upcoming)

    async def _cancel_locked(self, ticket: Ticket) -> tuple[Ticket, Transition]:
        async with self._locks.for_service(ticket.service_id):
            async with self._repository.transaction() as tx:
                service = await self._lock_service(tx, ticket.service_id)
                fresh = await tx.get_ticket(ticket.id)
                if fresh is None:
                    raise NotFoundError("Ticket not found")
                transition = TicketStateMachine.apply(fresh.status, TicketEvent.CANCEL)
                canceled = await self._apply(tx, fresh, transition, self._clock())
                if transition.pointer is PointerEffect.CLEAR_IF_CURRENT and service.current_ticket_id == fresh.id:
                    await tx.set_current_ticket(service.id, None)
        logger.info("Canceled %s (was %s)", canceled.display_no, transition.source.value)
        return canceled, transition

    async def _call_oldest(self, tx: QueueTransaction, service: Service, now: datetime) -> Ticket:
        candidate = await tx.oldest_waiting(service.id)
        if candidate is None:
            raise NotFoundError("No waiting ticket")
        transition = TicketStateMachine.apply(candidate.status, TicketEvent.CALL)
        called = await self._apply(tx, candidate, transition, now)
        await tx.set_current_ticket(service.id, called.id)
        service.current_ticket_id = called.id
        return called

    async def _close_current(
        self, tx: QueueTransaction, service: Service, event: TicketEvent, now: datetime
    ) -> Ticket:
        current = await self._require_current(tx, service)
        transition = TicketStateMachine.apply(current.status, event)
        finished = await self._apply(tx, current, transition, now)
        await tx.set_current_ticket(service.id, None)
        service.current_ticket_id = None
        return finished

    async def _apply(self, tx: QueueTransaction, ticket: Ticket, transition: Transition, now: datetime) -> Ticket:
        try:
            return await tx.update_ticket_status(
                ticket.id,
                expected=transition.source,
                status=transition.target,
                timestamp_field=transition.timestamp_field,
                at=now,
            )
        except RecordNotFoundError as exc:
            raise ConflictError(
                f"Ticket {ticket.display_no} is no longer {transition.source.value}",
                current_status=transition.source.value,
            ) from exc

    async def _lock_service(self, tx: QueueTransaction, service_id: int) -> Service:
        service = await tx.lock_service(service_id)
        if service is None:
            raise NotFoundError("Service not found")
        return service

    async def _require_service(self, tx: QueueTransaction, service_id: int) -> Service:
        service = await tx.get_service(service_id)
        if service is None:
            raise NotFoundError("Service not found")
        return service

    async def _require_current(self, tx: QueueTransaction, service: Service) -> Ticket:
        if service.current_ticket_id is None:
            raise NotFoundError("No current ticket")
        current = await tx.get_ticket(service.current_ticket_id)
        if current is None:
            raise NotFoundError("No current ticket")
        return current

    @staticmethod
    def _ensure_accepting(service: Service | None) -> Service:
        if service is None:
            raise NotFoundError("Service not found")
        if not service.is_open:
            raise ForbiddenError("Service closed")
        return service

    async def _notify_called(self, service_id: int, result: AdvanceResult) -> None:
        if result.current is None:
            return
        await self._notify(
            service_id,
            NextEvent(
                current=TicketPayload.from_ticket(result.current),
                next=TicketPayload.from_ticket(result.next),
            ),
        )

    async def _notify(self, service_id: int, event: DeltaEvent) -> None:
        if self._notifier is not None:
            await self._notifier.notify(service_id, event)

    async def _publish_state(self, service_id: int) -> None:
        if self._notifier is not None:
            await self._notifier.publish_state(service_id)
