from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import ConflictError


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    WAITING = "WAITING"
    CALLED = "CALLED"
    SERVED = "SERVED"
    SKIPPED = "SKIPPED"
    CANCELED = "CANCELED"


class TicketEvent(str, Enum):
    """Staff or visitor actions applied to a single ticket."""

    CALL = "call"
    SERVE = "serve"
    SKIP = "skip"
    RECALL = "recall"
    CANCEL = "cancel"


class PointerEffect(str, Enum):
    """What a transition does to the owning service's current ticket pointer."""

    SET = "set"
    CLEAR = "clear"
    KEEP = "keep"
    CLEAR_IF_CURRENT = "clear_if_current"


@dataclass(frozen=True, slots=True)
class Transition:
    """Outcome of applying an event to a ticket status."""

    source: TicketStatus
    event: TicketEvent
    target: TicketStatus
    timestamp_field: str | None
    pointer: PointerEffect

    @property
    def changes_status(self) -> bool:
        return self.source != self.target


class TicketStateMachine:
    """Decide legal ticket transitions and their side effects."""

    _RULES: dict[tuple[TicketStatus, TicketEvent], tuple[TicketStatus, str | None, PointerEffect]] = {
        (TicketStatus.WAITING, TicketEvent.CALL): (TicketStatus.CALLED, "called_at", PointerEffect.SET),
        (TicketStatus.CALLED, TicketEvent.SERVE): (TicketStatus.SERVED, "served_at", PointerEffect.CLEAR),
        (TicketStatus.CALLED, TicketEvent.SKIP): (TicketStatus.SKIPPED, "skipped_at", PointerEffect.CLEAR),
        (TicketStatus.CALLED, TicketEvent.RECALL): (TicketStatus.CALLED, None, PointerEffect.KEEP),
        (TicketStatus.WAITING, TicketEvent.CANCEL): (
            TicketStatus.CANCELED,
            "canceled_at",
            PointerEffect.CLEAR_IF_CURRENT,
        ),
        (TicketStatus.CALLED, TicketEvent.CANCEL): (
            TicketStatus.CANCELED,
            "canceled_at",
            PointerEffect.CLEAR_IF_CURRENT,
        ),
    }

    _TERMINAL = frozenset({TicketStatus.SERVED, TicketStatus.SKIPPED, TicketStatus.CANCELED})

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.WAITING

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return status in cls._TERMINAL

    @classmethod
    def can_apply(cls, current: TicketStatus, event: TicketEvent) -> bool:
        return (current, event) in cls._RULES

    @classmethod
    def apply(cls, current: TicketStatus, event: TicketEvent) -> Transition:
        """Return the transition for ``event`` or raise ``ConflictError`` naming the status."""

        rule = cls._RULES.get((current, event))
        if rule is None:
            raise ConflictError(
                f"Cannot {event.value} ticket in status {current.value}",
                current_status=current.value,
            )
        target, timestamp_field, pointer = rule
        return Transition(
            source=current,
            event=event,
            target=target,
            timestamp_field=timestamp_field,
            pointer=pointer,
        )
