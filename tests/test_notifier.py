from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

from servicequeue.queue.errors import TransientStoreError
from servicequeue.queue.events import NextEvent, SkipEvent, StateEvent, TicketPayload
from servicequeue.queue.notifier import LiveStateNotifier


async def _drain(subscription):
    events = []
    while subscription.pending():
        events.append(await subscription.receive(timeout=0.1))
    return events


def _types(events):
    return [event.type for event in events]


@pytest.mark.asyncio
async def test_call_next_publishes_delta_then_state(engine, registry, services):
    await engine.enqueue("A", "guest")
    await engine.enqueue("A", "guest")
    subscription = registry.subscribe(services.a.id)

    await engine.call_next(services.a.id)

    events = await _drain(subscription)
    assert _types(events) == ["NEXT", "STATE"]
    delta, state = events
    assert delta.current.display_no == "A001"
    assert delta.next.display_no == "A002"
    assert delta.waiting == 1
    assert state.current.display_no == "A001"
    assert state.waiting == 1


@pytest.mark.asyncio
async def test_serve_and_next_publishes_served_before_next(engine, registry, services):
    await engine.enqueue("A", "guest")
    await engine.enqueue("A", "guest")
    await engine.call_next(services.a.id)
    subscription = registry.subscribe(services.a.id)

    await engine.serve_and_next(services.a.id)

    events = await _drain(subscription)
    assert _types(events) == ["SERVED", "STATE", "NEXT", "STATE"]
    assert events[0].served.display_no == "A001"
    assert events[2].current.display_no == "A002"
    assert events[-1].current.status == "CALLED"


@pytest.mark.asyncio
async def test_enqueue_and_visitor_cancel_publish_state_only(engine, registry, services):
    subscription = registry.subscribe(services.a.id)

    ticket = await engine.enqueue("A", "guest")
    await engine.cancel_by_token(ticket.token)

    events = await _drain(subscription)
    assert _types(events) == ["STATE", "STATE"]
    assert events[0].waiting == 1
    assert events[0].next.display_no == "A001"
    assert events[1].waiting == 0


@pytest.mark.asyncio
async def test_staff_cancel_of_current_ticket_publishes_skip(engine, registry, services):
    current = await engine.enqueue("A", "guest")
    waiting = await engine.enqueue("A", "guest")
    await engine.call_next(services.a.id)
    subscription = registry.subscribe(services.a.id)

    await engine.cancel(waiting.id)
    await engine.cancel(current.id)

    events = await _drain(subscription)
    assert _types(events) == ["STATE", "SKIP", "STATE"]
    assert events[1].current.status == "CANCELED"
    assert events[2].current is None


@pytest.mark.asyncio
async def test_recall_publishes_recall_event(engine, registry, services):
    await engine.enqueue("A", "guest")
    await engine.call_next(services.a.id)
    subscription = registry.subscribe(services.a.id)

    await engine.recall(services.a.id)

    assert _types(await _drain(subscription)) == ["RECALL", "STATE"]


@pytest.mark.asyncio
async def test_events_stay_on_their_service_channel(engine, registry, services):
    other = registry.subscribe(services.b.id)

    await engine.enqueue("A", "guest")

    assert other.pending() == 0


class UnavailableRepository:
    @asynccontextmanager
    async def read(self):
        raise TransientStoreError("Queue store unavailable")
        yield  # pragma: no cover


def _called_payload():
    return TicketPayload(id=1, display_no="A001", service_id=1, status="CALLED")


@pytest.mark.asyncio
async def test_notify_falls_back_to_raw_delta_when_store_fails(registry):
    notifier = LiveStateNotifier(UnavailableRepository(), registry)
    subscription = registry.subscribe(1)

    await notifier.notify(1, SkipEvent(current=_called_payload()))

    events = await _drain(subscription)
    assert _types(events) == ["SKIP"]
    assert events[0].waiting is None
    assert "waiting" not in events[0].to_wire()


@pytest.mark.asyncio
async def test_publish_state_swallows_store_failure(registry):
    notifier = LiveStateNotifier(UnavailableRepository(), registry)
    subscription = registry.subscribe(1)

    assert await notifier.publish_state(1) is None
    assert subscription.pending() == 0


@pytest.mark.asyncio
async def test_notify_skips_snapshot_when_it_fails(notifier, registry, services, monkeypatch):
    async def broken_state(service_id):
        raise TransientStoreError("Queue store unavailable")

    monkeypatch.setattr(notifier, "current_state", broken_state)
    subscription = registry.subscribe(services.a.id)

    await notifier.notify(services.a.id, NextEvent(current=_called_payload(), next=None))

    events = await _drain(subscription)
    assert _types(events) == ["NEXT"]
    assert events[0].waiting == 0


@pytest.mark.asyncio
async def test_current_state_for_unknown_service_is_empty(notifier):
    state = await notifier.current_state(404)

    assert isinstance(state, StateEvent)
    assert state.current is None
    assert state.next is None
    assert state.waiting == 0
