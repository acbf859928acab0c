from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from servicequeue.db.models import ServiceTable, TicketTable

from .errors import TransientStoreError
from .models import Service, Ticket
from .state import TicketStatus

logger = logging.getLogger(__name__)


class RecordNotFoundError(LookupError):
    """Raised when a conditional update matches no row."""


class QueueTransaction:
    """Store operations bound to a single session and transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_service(self, service_id: int) -> Service | None:
        row = await self._session.get(ServiceTable, service_id, populate_existing=True)
        return None if row is None else _row_to_service(row)

    async def get_service_by_code(self, code: str) -> Service | None:
        result = await self._session.execute(select(ServiceTable).where(ServiceTable.code == code))
        row = result.scalars().first()
        return None if row is None else _row_to_service(row)

    async def lock_service(self, service_id: int) -> Service | None:
        """Read the service row with a row lock held until the transaction ends."""

        result = await self._session.execute(
            select(ServiceTable)
            .where(ServiceTable.id == service_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.scalars().first()
        return None if row is None else _row_to_service(row)

    async def list_services(self) -> list[Service]:
        result = await self._session.execute(select(ServiceTable).order_by(ServiceTable.id.asc()))
        return [_row_to_service(row) for row in result.scalars().all()]

    async def get_ticket(self, ticket_id: int) -> Ticket | None:
        row = await self._session.get(TicketTable, ticket_id, populate_existing=True)
        return None if row is None else _row_to_ticket(row)

    async def get_ticket_by_token(self, token: str) -> Ticket | None:
        result = await self._session.execute(select(TicketTable).where(TicketTable.token == token))
        row = result.scalars().first()
        return None if row is None else _row_to_ticket(row)

    async def oldest_waiting(self, service_id: int) -> Ticket | None:
        result = await self._session.execute(
            select(TicketTable)
            .where(TicketTable.service_id == service_id, TicketTable.status == TicketStatus.WAITING.value)
            .order_by(TicketTable.created_at.asc(), TicketTable.id.asc())
            .limit(1)
        )
        row = result.scalars().first()
        return None if row is None else _row_to_ticket(row)

    async def count_waiting(self, service_id: int) -> int:
        return await self._count(
            TicketTable.service_id == service_id,
            TicketTable.status == TicketStatus.WAITING.value,
        )

    async def count_created_between(self, service_id: int, start: datetime, end: datetime) -> int:
        return await self._count(
            TicketTable.service_id == service_id,
            TicketTable.created_at >= _to_utc(start),
            TicketTable.created_at <= _to_utc(end),
        )

    async def count_ahead(self, ticket: Ticket) -> int:
        """Count open tickets of the same service created before ``ticket``."""

        return await self._count(
            TicketTable.service_id == ticket.service_id,
            TicketTable.status.in_([TicketStatus.WAITING.value, TicketStatus.CALLED.value]),
            TicketTable.created_at < _to_utc(ticket.created_at),
        )

    async def waiting_counts(self) -> dict[int, int]:
        result = await self._session.execute(
            select(TicketTable.service_id, func.count())
            .where(TicketTable.status == TicketStatus.WAITING.value)
            .group_by(TicketTable.service_id)
        )
        return {int(service_id): int(count) for service_id, count in result.all()}

    async def tickets_created_between(self, service_id: int, start: datetime, end: datetime) -> list[Ticket]:
        result = await self._session.execute(
            select(TicketTable)
            .where(
                TicketTable.service_id == service_id,
                TicketTable.created_at >= _to_utc(start),
                TicketTable.created_at <= _to_utc(end),
            )
            .order_by(TicketTable.created_at.asc(), TicketTable.id.asc())
        )
        return [_row_to_ticket(row) for row in result.scalars().all()]

    async def update_ticket_status(
        self,
        ticket_id: int,
        *,
        expected: TicketStatus,
        status: TicketStatus,
        timestamp_field: str | None,
        at: datetime,
    ) -> Ticket:
        """Compare-and-set a ticket's status; raise ``RecordNotFoundError`` when no row matches."""

        values: dict[str, Any] = {"status": status.value}
        if timestamp_field is not None:
            values[timestamp_field] = _to_utc(at)
        result = await self._session.execute(
            update(TicketTable)
            .where(TicketTable.id == ticket_id, TicketTable.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RecordNotFoundError(f"Ticket {ticket_id} not found in status {expected.value}")
        ticket = await self.get_ticket(ticket_id)
        if ticket is None:
            raise RecordNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def set_current_ticket(self, service_id: int, ticket_id: int | None) -> None:
        result = await self._session.execute(
            update(ServiceTable)
            .where(ServiceTable.id == service_id)
            .values(current_ticket_id=ticket_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RecordNotFoundError(f"Service {service_id} not found")

    async def set_service_open(self, service_id: int, is_open: bool) -> Service:
        result = await self._session.execute(
            update(ServiceTable)
            .where(ServiceTable.id == service_id)
            .values(is_open=is_open)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RecordNotFoundError(f"Service {service_id} not found")
        service = await self.get_service(service_id)
        if service is None:
            raise RecordNotFoundError(f"Service {service_id} not found")
        return service

    async def create_service(self, *, code: str, name: str, is_open: bool = True) -> Service:
        row = ServiceTable(code=code, name=name, is_open=is_open)
        self._session.add(row)
        await self._session.flush()
        return _row_to_service(row)

    async def create_ticket(
        self,
        *,
        service_id: int,
        number: int,
        issued_on: date,
        display_no: str,
        token: str,
        created_at: datetime,
        name: str | None = None,
        student_id: str | None = None,
    ) -> Ticket:
        row = TicketTable(
            service_id=service_id,
            number=number,
            issued_on=issued_on,
            display_no=display_no,
            token=token,
            name=name,
            student_id=student_id,
            status=TicketStatus.WAITING.value,
            created_at=_to_utc(created_at),
        )
        self._session.add(row)
        await self._session.flush()
        return _row_to_ticket(row)

    async def _count(self, *criteria: Any) -> int:
        value = await self._session.scalar(select(func.count()).select_from(TicketTable).where(*criteria))
        return int(value or 0)


class QueueRepository:
    """Transactional access to the `services` and `tickets` tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        with _translate_store_errors():
            async with self._engine.begin() as connection:
                await connection.run_sync(SQLModel.metadata.create_all)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[QueueTransaction]:
        """Run the block in one transaction: commit on success, roll back on any error."""

        with _translate_store_errors():
            async with self._session_factory() as session:
                async with session.begin():
                    yield QueueTransaction(session)

    @asynccontextmanager
    async def read(self) -> AsyncIterator[QueueTransaction]:
        """Read-only access; nothing is committed."""

        with _translate_store_errors():
            async with self._session_factory() as session:
                yield QueueTransaction(session)


@contextmanager
def _translate_store_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        logger.warning("Queue store rejected a concurrent write: %s", exc.orig)
        raise TransientStoreError("Concurrent update detected, retry the operation") from exc
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Queue store transaction failed", exc_info=exc)
        raise TransientStoreError("Queue store unavailable") from exc


def _row_to_service(row: ServiceTable) -> Service:
    return Service(
        id=int(row.id),
        code=row.code,
        name=row.name,
        is_open=bool(row.is_open),
        current_ticket_id=row.current_ticket_id,
    )


def _row_to_ticket(row: TicketTable) -> Ticket:
    return Ticket(
        id=int(row.id),
        service_id=row.service_id,
        number=row.number,
        display_no=row.display_no,
        token=row.token,
        status=TicketStatus(row.status),
        created_at=_ensure_datetime(row.created_at),
        name=row.name,
        student_id=row.student_id,
        called_at=_optional_datetime(row.called_at),
        served_at=_optional_datetime(row.served_at),
        skipped_at=_optional_datetime(row.skipped_at),
        canceled_at=_optional_datetime(row.canceled_at),
    )


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        return _to_utc(value)
    raise TypeError("Expected datetime value from database")


def _optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else _ensure_datetime(value)
