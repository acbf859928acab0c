from __future__ import annotations

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from servicequeue.dependencies.auth import CurrentStaff
from servicequeue.dependencies.queue import QueueEngineDep
from servicequeue.queue.events import TicketPayload
from servicequeue.queue.models import Ticket
from servicequeue.queue.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])

NO_STORE_HEADERS = {"Cache-Control": "no-store, no-cache, must-revalidate"}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EnqueueRequest(CamelModel):
    service_code: str = ""
    mode: str = ""
    student_id: str | None = None


class EnqueueResponse(CamelModel):
    id: int
    token: str
    display_no: str


class VisitorTicket(CamelModel):
    id: int
    display_no: str
    status: TicketStatus
    service_id: int
    name: str | None = None


class TicketStatusResponse(CamelModel):
    ticket: VisitorTicket
    waiting_ahead: int
    current_ticket_id: int | None


class CanceledResponse(CamelModel):
    canceled: TicketPayload


def _visitor_ticket(ticket: Ticket) -> VisitorTicket:
    return VisitorTicket(
        id=ticket.id,
        display_no=ticket.display_no,
        status=ticket.status,
        service_id=ticket.service_id,
        name=ticket.name,
    )


@router.post("", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED)
async def enqueue(payload: EnqueueRequest, engine: QueueEngineDep) -> EnqueueResponse:
    ticket = await engine.enqueue(payload.service_code, payload.mode, payload.student_id)
    return EnqueueResponse(id=ticket.id, token=ticket.token, display_no=ticket.display_no)


@router.get("/{token}", response_model=TicketStatusResponse)
async def get_ticket(token: str, engine: QueueEngineDep, response: Response) -> TicketStatusResponse:
    lookup = await engine.get_ticket_by_token(token)
    response.headers.update(NO_STORE_HEADERS)
    return TicketStatusResponse(
        ticket=_visitor_ticket(lookup.ticket),
        waiting_ahead=lookup.waiting_ahead,
        current_ticket_id=lookup.current_ticket_id,
    )


@router.delete("/{token}")
async def cancel_own_ticket(token: str, engine: QueueEngineDep) -> dict[str, bool]:
    await engine.cancel_by_token(token)
    return {"ok": True}


@router.post("/{ticket_id}/cancel", response_model=CanceledResponse)
async def cancel_ticket(ticket_id: int, _: CurrentStaff, engine: QueueEngineDep) -> CanceledResponse:
    canceled = await engine.cancel(ticket_id)
    return CanceledResponse(canceled=TicketPayload.from_ticket(canceled))
