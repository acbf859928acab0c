from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from servicequeue.cli import init_db
from servicequeue.core.config import Settings
from servicequeue.main import create_app

STAFF = {"x-staff-pin": "2468"}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_dsn=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        staff_pin="2468",
        stream_keepalive_seconds=0.05,
    )


@pytest.fixture
def client(settings):
    created = asyncio.run(
        init_db(settings.database_dsn, [("A", "Registrar"), ("B", "Finance"), ("C", "Cashier")])
    )
    assert created == ["A", "B", "C"]

    with TestClient(create_app(settings)) as test_client:
        test_client.patch("/services/3/open", json={"isOpen": False}, headers=STAFF)
        yield test_client


def _enqueue(client, code="A", mode="guest", **extra):
    return client.post("/tickets", json={"serviceCode": code, "mode": mode, **extra})


def test_ping_routes(client):
    assert client.get("/ping").json() == {"status": "ok"}

    denied = client.get("/ping/secure")
    assert denied.status_code == 401
    assert denied.json() == {"error": "Unauthorized"}

    allowed = client.get("/ping/secure", headers={"x-admin-pin": "2468"})
    assert allowed.json() == {"status": "ok", "user": "pin-user"}


def test_visitor_flow_and_staff_transitions(client):
    created = _enqueue(client)
    assert created.status_code == 201
    body = created.json()
    assert body["displayNo"] == "A001"
    token = body["token"]

    _enqueue(client)

    status = client.get(f"/tickets/{token}")
    assert status.status_code == 200
    assert status.headers["cache-control"].startswith("no-store")
    assert status.json()["ticket"]["status"] == "WAITING"
    assert status.json()["waitingAhead"] == 0
    assert status.json()["currentTicketId"] is None

    assert client.post("/services/1/next").status_code == 401

    called = client.post("/services/1/next", headers=STAFF)
    assert called.status_code == 200
    assert called.json()["current"]["displayNo"] == "A001"
    assert called.json()["current"]["status"] == "CALLED"
    assert called.json()["next"]["displayNo"] == "A002"

    busy = client.post("/services/1/next", headers=STAFF)
    assert busy.status_code == 409
    assert "still being served" in busy.json()["error"]

    recalled = client.post("/services/1/recall", headers=STAFF)
    assert recalled.json()["current"]["displayNo"] == "A001"

    advanced = client.post("/services/1/serve-and-next", headers=STAFF)
    assert advanced.status_code == 200
    assert advanced.json()["served"]["status"] == "SERVED"
    assert advanced.json()["current"]["displayNo"] == "A002"
    assert advanced.json()["next"] is None

    skipped = client.post("/services/1/skip", headers=STAFF)
    assert skipped.json()["current"]["status"] == "SKIPPED"

    missing = client.post("/services/1/serve", headers=STAFF)
    assert missing.status_code == 404
    assert missing.json() == {"error": "No current ticket"}

    empty = client.post("/services/1/skip-and-next", headers=STAFF)
    assert empty.status_code == 404


def test_service_reads(client):
    _enqueue(client)
    _enqueue(client, "B")

    listing = {item["code"]: item for item in client.get("/services").json()}
    assert listing["A"]["waiting"] == 1
    assert listing["B"]["waiting"] == 1
    assert listing["C"]["isOpen"] is False

    assert client.get("/services/by-code", params={"code": "B"}).json()["name"] == "Finance"
    assert client.get("/services/by-code").json() == {"error": "code required"}
    assert client.get("/services/by-code", params={"code": "Z"}).status_code == 404

    state = client.get("/services/1/state")
    assert state.headers["cache-control"].startswith("no-store")
    assert state.json()["service"]["code"] == "A"
    assert state.json()["current"] is None
    assert state.json()["next"]["displayNo"] == "A001"
    assert state.json()["waiting"] == 1

    assert client.get("/services/99/state").status_code == 404


def test_enqueue_errors(client):
    closed = _enqueue(client, "C")
    assert closed.status_code == 403
    assert closed.json() == {"error": "Service closed"}

    assert _enqueue(client, "Z").status_code == 404
    assert _enqueue(client, "").json() == {"error": "serviceCode required"}
    assert _enqueue(client, mode="vip").status_code == 400
    assert _enqueue(client, mode="student").json() == {"error": "studentId required for student mode"}

    upstream = _enqueue(client, mode="student", studentId="6401")
    assert upstream.status_code == 502
    assert upstream.json() == {"error": "UNIVERSITY_API_URL is not set"}

    assert client.get("/services").json()[0]["waiting"] == 0


def test_cancel_routes(client):
    token = _enqueue(client).json()["token"]
    ticket_id = _enqueue(client).json()["id"]

    assert client.delete(f"/tickets/{token}").json() == {"ok": True}
    assert client.delete(f"/tickets/{token}").json() == {"ok": True}
    assert client.delete("/tickets/unknown-token").json() == {"ok": True}
    assert client.get(f"/tickets/{token}").json()["ticket"]["status"] == "CANCELED"

    assert client.post(f"/tickets/{ticket_id}/cancel").status_code == 401
    canceled = client.post(f"/tickets/{ticket_id}/cancel", headers=STAFF)
    assert canceled.json()["canceled"]["status"] == "CANCELED"

    again = client.post(f"/tickets/{ticket_id}/cancel", headers=STAFF)
    assert again.status_code == 409
    assert again.json()["status"] == "CANCELED"

    assert client.post("/tickets/9999/cancel", headers=STAFF).status_code == 404


def test_open_toggle_and_stats(client):
    reopened = client.patch("/services/3/open", json={"isOpen": True}, headers=STAFF)
    assert reopened.json()["isOpen"] is True
    assert _enqueue(client, "C").status_code == 201

    invalid = client.patch("/services/3/open", json={}, headers=STAFF)
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "Invalid request"

    assert client.get("/services/3/stats").status_code == 401
    stats = client.get("/services/3/stats", headers=STAFF)
    assert stats.status_code == 200
    body = stats.json()
    assert body["serviceId"] == 3
    assert body["counts"]["total"] == 1
    assert body["counts"]["waiting"] == 1
    assert body["averages"] == {"wait_ms": 0, "wait_s": 0.0, "service_ms": 0, "service_s": 0.0}
    assert set(body["range"]) == {"from", "to"}

    reversed_range = client.get(
        "/services/3/stats",
        params={"from": "2024-01-02T00:00:00Z", "to": "2024-01-01T00:00:00Z"},
        headers=STAFF,
    )
    assert reversed_range.status_code == 400


def test_non_numeric_ids_are_rejected(client):
    response = client.post("/services/abc/next", headers=STAFF)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


def test_stream_rejects_unknown_format(client):
    assert client.get("/stream/1", params={"format": "xml"}).status_code == 400


def test_queue_routes_answer_503_without_engine(settings):
    app = create_app(settings)
    plain_client = TestClient(app)

    response = plain_client.get("/services")

    assert response.status_code == 503
    assert response.json() == {"error": "Queue engine is not configured"}
