"""SQLModel table definitions for the queue store."""

from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class ServiceTable(SQLModel, table=True):
    """A staffed counter that visitors queue for."""

    __tablename__ = "services"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String(16), nullable=False, unique=True))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    is_open: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    # Weak pointer to the CALLED ticket.
    current_ticket_id: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))


class TicketTable(SQLModel, table=True):
    """A visitor's place in one service's queue."""

    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("service_id", "issued_on", "number", name="uq_tickets_service_day_number"),
        Index("ix_tickets_service_status_created", "service_id", "status", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    service_id: int = Field(
        sa_column=Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    )
    number: int = Field(sa_column=Column(Integer, nullable=False))
    issued_on: date = Field(sa_column=Column(Date, nullable=False))
    display_no: str = Field(sa_column=Column(String(32), nullable=False))
    token: str = Field(sa_column=Column(String(64), nullable=False, unique=True))
    name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    student_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    status: str = Field(sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    called_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    served_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    skipped_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    canceled_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
