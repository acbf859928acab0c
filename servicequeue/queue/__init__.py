"""Queue domain: ticket state machine, transition engine and live notifications."""

from .engine import QueueEngine, ServiceLocks, VisitorMode
from .errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    QueueServiceError,
    QueueValidationError,
    TransientStoreError,
    UpstreamError,
)
from .models import Service, Ticket
from .notifier import LiveStateNotifier
from .registry import Subscription, SubscriptionRegistry
from .repository import QueueRepository, QueueTransaction, RecordNotFoundError
from .state import TicketEvent, TicketStateMachine, TicketStatus

__all__ = [
    "ConflictError",
    "ForbiddenError",
    "LiveStateNotifier",
    "NotFoundError",
    "QueueEngine",
    "QueueRepository",
    "QueueServiceError",
    "QueueTransaction",
    "QueueValidationError",
    "RecordNotFoundError",
    "Service",
    "ServiceLocks",
    "Subscription",
    "SubscriptionRegistry",
    "Ticket",
    "TicketEvent",
    "TicketStateMachine",
    "TicketStatus",
    "TransientStoreError",
    "UpstreamError",
    "VisitorMode",
]
