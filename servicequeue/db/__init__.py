"""Database table definitions shared by the queue store."""

from .models import ServiceTable, TicketTable

__all__ = ["ServiceTable", "TicketTable"]
