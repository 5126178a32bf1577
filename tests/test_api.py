"""
Integration tests for the REST API endpoints.

The app is built around the test service graph (SQLite store, recording
sleep), so routes run against a real store without PostgreSQL or Redis.
ASGITransport does not run lifespan events; the ``services`` fixture
starts the event bus itself.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient

from src.api.app import create_app
from src.api.middleware import limiter
from src.domain.enums import BookingStatus, DriverStatus
from src.domain.exceptions import TransientBackendError
from src.realtime.rooms import RoomRouter


@pytest_asyncio.fixture
async def app(services):
    limiter.reset()
    return create_app(services)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["realtime"]["transport"] == "in-process"


@pytest.mark.asyncio
async def test_get_booking(client: AsyncClient, seed):
    booking = await seed.booking()
    resp = await client.get(f"/api/v1/bookings/{booking.id}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == booking.id
    assert data["status"] == "confirmed"
    assert data["pending_sync"] is False


@pytest.mark.asyncio
async def test_get_booking_not_found(client: AsyncClient, seed):
    resp = await client.get("/api/v1/bookings/9999")
    assert resp.status_code == 404
    assert resp.json() == {
        "success": False,
        "error": "not_found",
        "detail": "booking 9999 not found",
    }


@pytest.mark.asyncio
async def test_payment_confirms_booking(client: AsyncClient, seed):
    booking = await seed.booking(BookingStatus.PENDING)
    resp = await client.post(
        f"/api/v1/bookings/{booking.id}/payment", json={"payment_id": "pay_1"}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"
    assert resp.json()["payment_status"] == "completed"


@pytest.mark.asyncio
async def test_confirm_unpaid_is_409(client: AsyncClient, seed):
    booking = await seed.booking(BookingStatus.PENDING)
    resp = await client.post(f"/api/v1/bookings/{booking.id}/confirm")
    assert resp.status_code == 409
    data = resp.json()
    assert data["error"] == "invalid_transition"
    assert data["from"] == "pending"
    assert data["to"] == "confirmed"

    resp = await client.post(
        f"/api/v1/bookings/{booking.id}/confirm", json={"admin_override": True}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_candidates(client: AsyncClient, seed):
    booking = await seed.booking(cab_type="SUV")
    driver = await seed.driver(cab_type="SUV")
    await seed.driver(cab_type="Sedan")
    resp = await client.get(f"/api/v1/bookings/{booking.id}/candidates")
    assert resp.status_code == 200
    assert [d["id"] for d in resp.json()] == [driver.id]


@pytest.mark.asyncio
async def test_assign_and_remove(client: AsyncClient, seed):
    booking = await seed.booking()
    driver = await seed.driver()

    resp = await client.put(
        "/api/v1/dispatch/assign",
        json={"booking_id": booking.id, "driver_id": driver.id},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["confirmed"] is True
    assert data["attempts"] == 1
    assert data["booking"]["status"] == "assigned"
    assert data["driver"]["status"] == "assigned"

    resp = await client.put("/api/v1/dispatch/remove", json={"booking_id": booking.id})
    assert resp.status_code == 200
    assert resp.json()["booking"]["driver_id"] is None


@pytest.mark.asyncio
async def test_assign_taken_booking_is_409(client: AsyncClient, seed):
    booking = await seed.booking(BookingStatus.ASSIGNED)
    other = await seed.driver()
    resp = await client.put(
        "/api/v1/dispatch/assign",
        json={"booking_id": booking.id, "driver_id": other.id},
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "assignment_conflict"


@pytest.mark.asyncio
async def test_assign_backend_down_is_503(client: AsyncClient, services, seed, monkeypatch):
    booking = await seed.booking()
    driver = await seed.driver()

    async def unavailable(*args):
        raise TransientBackendError("connection refused")

    monkeypatch.setattr(services.matcher, "assign", unavailable)
    resp = await client.put(
        "/api/v1/dispatch/assign",
        json={"booking_id": booking.id, "driver_id": driver.id},
    )
    assert resp.status_code == 503
    data = resp.json()
    assert data["error"] == "dispatch_failed"
    assert data["attempts"] == 3
    assert data["provisional_rolled_back"] is True

    resp = await client.get(f"/api/v1/bookings/{booking.id}")
    assert resp.json()["pending_sync"] is False
    assert resp.json()["driver_id"] is None


@pytest.mark.asyncio
async def test_trip_flow(client: AsyncClient, seed, store):
    driver = await seed.driver()
    booking = await seed.booking(BookingStatus.ASSIGNED, driver=driver)

    resp = await client.put(
        f"/api/v1/drivers/{driver.id}/start-trip", json={"booking_id": booking.id}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "inProgress"

    resp = await client.put(
        f"/api/v1/drivers/{driver.id}/location", json={"lat": 19.1, "lng": 72.9}
    )
    assert resp.status_code == 200

    resp = await client.put(
        f"/api/v1/drivers/{driver.id}/complete-trip", json={"booking_id": booking.id}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert (await store.get_driver(driver.id)).status == DriverStatus.AVAILABLE


@pytest.mark.asyncio
async def test_cancel_with_refund(client: AsyncClient, seed):
    booking = await seed.booking()
    resp = await client.post(
        f"/api/v1/bookings/{booking.id}/cancel",
        json={"reason": "flight cancelled", "is_refund_eligible": True},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "cancelled"
    assert data["refund_status"] == "processed"


@pytest.mark.asyncio
async def test_cancel_started_ride_is_422(client: AsyncClient, seed):
    booking = await seed.booking(BookingStatus.IN_PROGRESS)
    resp = await client.post(
        f"/api/v1/bookings/{booking.id}/cancel", json={"reason": "x"}
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "not_eligible"


@pytest.mark.asyncio
async def test_rating(client: AsyncClient, seed):
    booking = await seed.booking(BookingStatus.COMPLETED)

    resp = await client.get(f"/api/v1/bookings/{booking.id}/eligibility")
    assert resp.json()["user_rating"]["needed"] is True

    resp = await client.post(
        f"/api/v1/bookings/{booking.id}/ratings",
        json={"rater_role": "user", "target_id": booking.driver_id, "rating": 5},
    )
    assert resp.status_code == 201
    assert resp.json()["user_rating"]["score"] == 5

    resp = await client.get(f"/api/v1/bookings/{booking.id}/eligibility")
    assert resp.json()["user_rating"]["needed"] is False


@pytest.mark.asyncio
async def test_rating_out_of_range_is_rejected(client: AsyncClient, seed):
    booking = await seed.booking(BookingStatus.COMPLETED)
    resp = await client.post(
        f"/api/v1/bookings/{booking.id}/ratings",
        json={"rater_role": "user", "target_id": booking.driver_id, "rating": 9},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_admin_lists(client: AsyncClient, seed):
    waiting = await seed.booking()
    await seed.booking(BookingStatus.ASSIGNED)
    await seed.booking(BookingStatus.PENDING)

    resp = await client.get("/api/v1/admin/bookings")
    assert len(resp.json()) == 3

    resp = await client.get("/api/v1/admin/bookings", params={"status": "pending"})
    assert [b["status"] for b in resp.json()] == ["pending"]

    resp = await client.get("/api/v1/admin/bookings/awaiting-driver")
    assert [b["id"] for b in resp.json()] == [waiting.id]


@pytest.mark.asyncio
async def test_admin_override(client: AsyncClient, seed):
    booking = await seed.booking(BookingStatus.ASSIGNED)
    resp = await client.patch(
        f"/api/v1/admin/bookings/{booking.id}/status", json={"status": "pending"}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"
    assert resp.json()["driver_id"] is None


def test_websocket_join_rooms():
    rooms = RoomRouter()
    # lifespan is not entered; the socket only needs the room router
    client = TestClient(create_app(SimpleNamespace(router=rooms)))
    with client.websocket_connect("/api/v1/ws") as ws:
        ws.send_json({"action": "joinUserRoom", "id": 1})
        assert ws.receive_json() == {"joined": "user:1"}
        ws.send_json({"action": "joinUserRoom", "id": 1})
        assert ws.receive_json() == {"joined": "user:1"}
        ws.send_json({"action": "joinAdminRoom"})
        assert ws.receive_json() == {"joined": "admin"}
        ws.send_json({"action": "dance"})
        assert "error" in ws.receive_json()
        ws.send_json([1])
        assert ws.receive_json() == {"error": "bad request: expected a JSON object"}
        ws.send_text("not json")
        assert "error" in ws.receive_json()
        ws.send_json({"action": "joinDriverRoom", "id": 7})
        assert ws.receive_json() == {"joined": "driver:7"}
        assert rooms.active_connections == 1
        [connection_id] = rooms.members("admin")
        assert rooms.rooms_of(connection_id) == {"user:1", "admin", "driver:7"}
