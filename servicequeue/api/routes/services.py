from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from servicequeue.dependencies.auth import CurrentStaff
from servicequeue.dependencies.queue import QueueEngineDep
from servicequeue.queue.events import TicketPayload
from servicequeue.queue.models import Service

router = APIRouter(prefix="/services", tags=["services"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ServiceResponse(CamelModel):
    id: int
    code: str
    name: str
    is_open: bool

    @classmethod
    def from_service(cls, service: Service) -> "ServiceResponse":
        return cls(id=service.id, code=service.code, name=service.name, is_open=service.is_open)


class ServiceListItem(ServiceResponse):
    waiting: int


class ServiceStateResponse(CamelModel):
    service: ServiceResponse
    current: TicketPayload | None
    next: TicketPayload | None
    waiting: int


class OpenToggleRequest(CamelModel):
    is_open: bool


class CallResponse(CamelModel):
    current: TicketPayload
    next: TicketPayload | None


class CurrentResponse(CamelModel):
    current: TicketPayload


class ServedResponse(CamelModel):
    served: TicketPayload
    next: TicketPayload | None


class ServeAndNextResponse(CamelModel):
    served: TicketPayload
    current: TicketPayload | None
    next: TicketPayload | None


class SkipAndNextResponse(CamelModel):
    skipped: TicketPayload
    current: TicketPayload | None
    next: TicketPayload | None


class StatsRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: datetime = Field(alias="from")
    to: datetime


class StatsCounts(BaseModel):
    total: int
    waiting: int
    called: int
    served: int
    skipped: int
    canceled: int


class StatsAverages(BaseModel):
    wait_ms: int
    wait_s: float
    service_ms: int
    service_s: float


class ServiceStatsResponse(CamelModel):
    service_id: int
    range: StatsRange
    counts: StatsCounts
    averages: StatsAverages


@router.get("", response_model=list[ServiceListItem])
async def list_services(engine: QueueEngineDep) -> list[ServiceListItem]:
    summaries = await engine.list_services_with_waiting_counts()
    return [
        ServiceListItem(
            id=item.service.id,
            code=item.service.code,
            name=item.service.name,
            is_open=item.service.is_open,
            waiting=item.waiting,
        )
        for item in summaries
    ]


@router.get("/by-code", response_model=ServiceResponse)
async def get_service_by_code(engine: QueueEngineDep, code: str = Query(default="")) -> ServiceResponse:
    service = await engine.get_service_by_code(code)
    return ServiceResponse.from_service(service)


@router.get("/{service_id}/state", response_model=ServiceStateResponse)
async def get_service_state(service_id: int, engine: QueueEngineDep, response: Response) -> ServiceStateResponse:
    snapshot = await engine.get_service_snapshot(service_id)
    response.headers.update(NO_STORE_HEADERS)
    return ServiceStateResponse(
        service=ServiceResponse.from_service(snapshot.service),
        current=TicketPayload.from_ticket(snapshot.current),
        next=TicketPayload.from_ticket(snapshot.next),
        waiting=snapshot.waiting,
    )


@router.get("/{service_id}/stats", response_model=ServiceStatsResponse)
async def get_service_stats(
    service_id: int,
    _: CurrentStaff,
    engine: QueueEngineDep,
    range_from: datetime | None = Query(default=None, alias="from"),
    range_to: datetime | None = Query(default=None, alias="to"),
) -> ServiceStatsResponse:
    stats = await engine.get_service_stats(service_id, range_from=range_from, range_to=range_to)
    counts = stats.counts
    return ServiceStatsResponse(
        service_id=stats.service_id,
        range=StatsRange(from_=stats.range_from, to=stats.range_to),
        counts=StatsCounts(
            total=counts.total,
            waiting=counts.waiting,
            called=counts.called,
            served=counts.served,
            skipped=counts.skipped,
            canceled=counts.canceled,
        ),
        averages=StatsAverages(
            wait_ms=stats.avg_wait_ms,
            wait_s=stats.avg_wait_s,
            service_ms=stats.avg_service_ms,
            service_s=stats.avg_service_s,
        ),
    )


@router.patch("/{service_id}/open", response_model=ServiceResponse)
async def set_service_open(
    service_id: int, payload: OpenToggleRequest, _: CurrentStaff, engine: QueueEngineDep
) -> ServiceResponse:
    service = await engine.set_service_open(service_id, payload.is_open)
    return ServiceResponse.from_service(service)


@router.post("/{service_id}/next", response_model=CallResponse)
async def call_next(service_id: int, _: CurrentStaff, engine: QueueEngineDep) -> CallResponse:
    result = await engine.call_next(service_id)
    return CallResponse(current=TicketPayload.from_ticket(result.current), next=TicketPayload.from_ticket(result.next))


@router.post("/{service_id}/recall", response_model=CurrentResponse)
async def recall(service_id: int, _: CurrentStaff, engine: QueueEngineDep) -> CurrentResponse:
    current = await engine.recall(service_id)
    return CurrentResponse(current=TicketPayload.from_ticket(current))


@router.post("/{service_id}/serve", response_model=ServedResponse)
async def serve(service_id: int, _: CurrentStaff, engine: QueueEngineDep) -> ServedResponse:
    result = await engine.serve(service_id)
    return ServedResponse(
        served=TicketPayload.from_ticket(result.finished),
        next=TicketPayload.from_ticket(result.next),
    )


@router.post("/{service_id}/skip", response_model=CurrentResponse)
async def skip(service_id: int, _: CurrentStaff, engine: QueueEngineDep) -> CurrentResponse:
    result = await engine.skip(service_id)
    return CurrentResponse(current=TicketPayload.from_ticket(result.finished))


@router.post("/{service_id}/serve-and-next", response_model=ServeAndNextResponse)
async def serve_and_next(service_id: int, _: CurrentStaff, engine: QueueEngineDep) -> ServeAndNextResponse:
    result = await engine.serve_and_next(service_id)
    return ServeAndNextResponse(
        served=TicketPayload.from_ticket(result.finished),
        current=TicketPayload.from_ticket(result.current),
        next=TicketPayload.from_ticket(result.next),
    )


@router.post("/{service_id}/skip-and-next", response_model=SkipAndNextResponse)
async def skip_and_next(service_id: int, _: CurrentStaff, engine: QueueEngineDep) -> SkipAndNextResponse:
    result = await engine.skip_and_next(service_id)
    return SkipAndNextResponse(
        skipped=TicketPayload.from_ticket(result.finished),
        current=TicketPayload.from_ticket(result.current),
        next=TicketPayload.from_ticket(result.next),
    )
