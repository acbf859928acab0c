from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .state import TicketStatus


@dataclass(slots=True)
class Service:
    """A staffed counter with its gate and current ticket pointer."""

    id: int
    code: str
    name: str
    is_open: bool
    current_ticket_id: int | None = None


@dataclass(slots=True)
class Ticket:
    """A visitor's place in one service's queue."""

    id: int
    service_id: int
    number: int
    display_no: str
    token: str
    status: TicketStatus
    created_at: datetime
    name: str | None = None
    student_id: str | None = None
    called_at: datetime | None = None
    served_at: datetime | None = None
    skipped_at: datetime | None = None
    canceled_at: datetime | None = None


@dataclass(slots=True)
class CallResult:
    """Newly called ticket plus a read-only preview of the following one."""

    current: Ticket
    next: Ticket | None


@dataclass(slots=True)
class FinishResult:
    """Ticket closed by serve or skip plus the following waiting preview."""

    finished: Ticket
    next: Ticket | None


@dataclass(slots=True)
class AdvanceResult:
    """Outcome of serve-and-next / skip-and-next."""

    finished: Ticket
    current: Ticket | None
    next: Ticket | None


@dataclass(slots=True)
class ServiceSnapshot:
    """Full recomputation of a service's current, next and waiting state."""

    service: Service
    current: Ticket | None
    next: Ticket | None
    waiting: int


@dataclass(slots=True)
class TicketLookup:
    """Visitor-facing view of a ticket found by its token."""

    ticket: Ticket
    waiting_ahead: int
    current_ticket_id: int | None


@dataclass(slots=True)
class ServiceSummary:
    service: Service
    waiting: int


@dataclass(slots=True)
class StatusCounts:
    total: int = 0
    waiting: int = 0
    called: int = 0
    served: int = 0
    skipped: int = 0
    canceled: int = 0


@dataclass(slots=True)
class ServiceStats:
    """Per-status counts and average durations for tickets created in a range."""

    service_id: int
    range_from: datetime
    range_to: datetime
    counts: StatusCounts = field(default_factory=StatusCounts)
    avg_wait_ms: int = 0
    avg_service_ms: int = 0

    @property
    def avg_wait_s(self) -> float:
        return round(self.avg_wait_ms / 1000, 1)

    @property
    def avg_service_s(self) -> float:
        return round(self.avg_service_ms / 1000, 1)
