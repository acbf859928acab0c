"""Live channel event frames."""

from __future__ import annotations

import json
import time
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .models import Ticket
from .state import TicketStatus


class TicketPayload(BaseModel):
    """Ticket projection shown on displays and staff consoles."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    display_no: str
    name: str | None = None
    service_id: int
    status: TicketStatus
    called_at: datetime | None = None
    served_at: datetime | None = None
    skipped_at: datetime | None = None

    @classmethod
    def from_ticket(cls, ticket: Ticket | None) -> "TicketPayload | None":
        if ticket is None:
            return None
        return cls(
            id=ticket.id,
            display_no=ticket.display_no,
            name=ticket.name,
            service_id=ticket.service_id,
            status=ticket.status,
            called_at=ticket.called_at,
            served_at=ticket.served_at,
            skipped_at=ticket.skipped_at,
        )


class LiveEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True)
        if "waiting" in payload and payload["waiting"] is None:
            del payload["waiting"]
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False, separators=(",", ":"))


class HelloEvent(LiveEvent):
    type: Literal["HELLO"] = "HELLO"
    ts: int = Field(default_factory=lambda: int(time.time() * 1000))


class NextEvent(LiveEvent):
    type: Literal["NEXT"] = "NEXT"
    current: TicketPayload | None
    next: TicketPayload | None
    waiting: int | None = None


class RecallEvent(LiveEvent):
    type: Literal["RECALL"] = "RECALL"
    current: TicketPayload
    waiting: int | None = None


class SkipEvent(LiveEvent):
    type: Literal["SKIP"] = "SKIP"
    current: TicketPayload
    waiting: int | None = None


class ServedEvent(LiveEvent):
    type: Literal["SERVED"] = "SERVED"
    served: TicketPayload
    next: TicketPayload | None
    waiting: int | None = None


class StateEvent(LiveEvent):
    type: Literal["STATE"] = "STATE"
    current: TicketPayload | None
    next: TicketPayload | None
    waiting: int


DeltaEvent = Union[NextEvent, RecallEvent, SkipEvent, ServedEvent]

ServiceEvent = Annotated[
    Union[HelloEvent, NextEvent, RecallEvent, SkipEvent, ServedEvent, StateEvent],
    Field(discriminator="type"),
]

_SERVICE_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(ServiceEvent)


def parse_event(data: str | bytes | dict[str, Any]) -> LiveEvent:
    """Decode one frame back into its event model."""

    if isinstance(data, (str, bytes)):
        return _SERVICE_EVENT_ADAPTER.validate_json(data)
    return _SERVICE_EVENT_ADAPTER.validate_python(data)
