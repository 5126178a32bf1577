"""
Realtime tests: room fan-out, the event bus and the reconnecting client.

The client is driven through a scripted in-memory transport; no sockets
are opened.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as aioredis

from src.domain.entities import Booking
from src.domain.enums import BookingStatus
from src.realtime.bus import EventBus
from src.realtime.client import ConnectionState, RealtimeClient
from src.realtime.events import (
    ADMIN_ROOM,
    DomainEvent,
    EventType,
    booking_event,
    driver_room,
    user_room,
)
from src.realtime.rooms import RoomRouter

BOOKING = Booking(id=5, user_id=1, driver_id=7, status=BookingStatus.ASSIGNED, total_amount=400.0)


# ── Events ────────────────────────────────────────────────────────────


class TestEventAudience:
    def test_assignment_reaches_user_driver_and_admin(self):
        event = booking_event(EventType.DRIVER_ASSIGNED, BOOKING)
        assert set(event.rooms()) == {user_room(1), driver_room(7), ADMIN_ROOM}

    @pytest.mark.parametrize(
        "event_type",
        [EventType.PAYMENT_RECEIVED, EventType.REFUND_PROCESSED, EventType.REFUND_FAILED],
    )
    def test_money_events_skip_driver(self, event_type):
        event = booking_event(event_type, BOOKING)
        assert driver_room(7) not in event.rooms()
        assert ADMIN_ROOM in event.rooms()

    def test_explicit_driver_overrides_booking(self):
        unbound = Booking(id=5, user_id=1, status=BookingStatus.CONFIRMED)
        event = booking_event(EventType.BOOKING_UPDATED, unbound, driver_id=9)
        assert driver_room(9) in event.rooms()

    def test_message_shape(self):
        event = booking_event(EventType.RIDE_STARTED, BOOKING, eta=4)
        message = event.to_message()
        assert message["event"] == "rideStarted"
        data = message["data"]
        assert data["booking_id"] == 5
        assert data["eta"] == 4
        assert data["booking"]["status"] == "assigned"
        assert data["event_id"] == event.event_id

    def test_json_round_trip_keeps_audience(self):
        event = booking_event(EventType.REFUND_FAILED, BOOKING, error="declined")
        restored = DomainEvent.from_json(event.to_json())
        assert restored.rooms() == event.rooms()
        assert restored.event_id == event.event_id


# ── Rooms ─────────────────────────────────────────────────────────────


class TestRoomRouter:
    @pytest.mark.asyncio
    async def test_connection_in_two_rooms_gets_event_once(self, connection_factory):
        router = RoomRouter()
        conn = connection_factory()
        cid = router.register(conn)
        router.join_user_room(cid, 1)
        router.join_admin_room(cid)

        sent = await router.deliver(booking_event(EventType.DRIVER_ASSIGNED, BOOKING))

        assert sent == 1
        assert conn.events() == ["driverAssigned"]

    def test_join_is_idempotent(self, connection_factory):
        router = RoomRouter()
        cid = router.register(connection_factory())
        assert router.join_driver_room(cid, 7)
        assert not router.join_driver_room(cid, 7)
        assert router.members(driver_room(7)) == {cid}

    def test_unknown_connection_cannot_join(self):
        assert not RoomRouter().join("nope", ADMIN_ROOM)

    @pytest.mark.asyncio
    async def test_failing_connection_is_dropped(self, connection_factory):
        router = RoomRouter()
        good, bad = connection_factory(), connection_factory(fail=True)
        for conn in (good, bad):
            router.join_admin_room(router.register(conn))

        sent = await router.deliver(booking_event(EventType.RIDE_STARTED, BOOKING))

        assert sent == 1
        assert router.active_connections == 1
        assert len(router.members(ADMIN_ROOM)) == 1
        assert router.get_stats()["connections_dropped"] == 1

    @pytest.mark.asyncio
    async def test_stalled_connection_is_dropped(self):
        class Stalled:
            async def send_json(self, data):
                await asyncio.Event().wait()

        router = RoomRouter(send_timeout=0.05)
        router.join_admin_room(router.register(Stalled()))

        assert await router.deliver(booking_event(EventType.RIDE_STARTED, BOOKING)) == 0
        assert router.active_connections == 0

    def test_disconnect_cleans_rooms(self, connection_factory):
        router = RoomRouter()
        cid = router.register(connection_factory())
        router.join_user_room(cid, 1)
        router.join_admin_room(cid)

        router.disconnect(cid)

        assert router.members(user_room(1)) == set()
        assert router.rooms_of(cid) == set()
        assert router.get_stats()["total_rooms"] == 0

    @pytest.mark.asyncio
    async def test_nobody_listening(self):
        assert await RoomRouter().deliver(booking_event(EventType.RIDE_STARTED, BOOKING)) == 0


# ── Bus ───────────────────────────────────────────────────────────────


class TestEventBus:
    @pytest.mark.asyncio
    async def test_in_process_delivery_in_order(self, connection_factory):
        router = RoomRouter()
        conn = connection_factory()
        router.join_admin_room(router.register(conn))
        bus = EventBus(router)
        await bus.start()
        try:
            bus.publish(booking_event(EventType.DRIVER_ASSIGNED, BOOKING))
            bus.publish(booking_event(EventType.RIDE_STARTED, BOOKING))
            await bus.drain()
        finally:
            await bus.stop()

        assert conn.events() == ["driverAssigned", "rideStarted"]
        assert bus.get_stats()["published"] == 2

    @pytest.mark.asyncio
    async def test_publish_never_blocks_on_dead_clients(self, connection_factory):
        router = RoomRouter()
        router.join_admin_room(router.register(connection_factory(fail=True)))
        bus = EventBus(router)
        await bus.start()
        try:
            bus.publish(booking_event(EventType.RIDE_STARTED, BOOKING))
            await bus.drain()
            assert bus.running
        finally:
            await bus.stop()
        assert not bus.running

    @pytest.mark.asyncio
    async def test_redis_publish(self):
        redis = MagicMock()
        redis.publish = AsyncMock(return_value=1)
        bus = EventBus(RoomRouter(), redis=redis, channel="test:events")
        event = booking_event(EventType.RIDE_STARTED, BOOKING)

        await bus._forward(event)

        channel, payload = redis.publish.await_args.args
        assert channel == "test:events"
        assert json.loads(payload)["event_id"] == event.event_id

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_local(self, connection_factory):
        router = RoomRouter()
        conn = connection_factory()
        router.join_admin_room(router.register(conn))
        redis = MagicMock()
        redis.publish = AsyncMock(side_effect=aioredis.ConnectionError("down"))
        bus = EventBus(router, redis=redis)

        await bus._forward(booking_event(EventType.RIDE_STARTED, BOOKING))

        assert conn.events() == ["rideStarted"]

    def test_cannot_switch_transport_while_running(self):
        bus = EventBus(RoomRouter())
        bus._dispatch_task = MagicMock(done=MagicMock(return_value=False))
        with pytest.raises(RuntimeError):
            bus.use_redis(MagicMock())


# ── Client ────────────────────────────────────────────────────────────


class FakeTransport:
    """Scripted socket: frames pushed with ``feed``; ``drop`` closes it."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def feed(self, event: str, data: dict) -> None:
        self._inbox.put_nowait(json.dumps({"event": event, "data": data}))

    def feed_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        self._inbox.put_nowait(ConnectionError("socket closed"))


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedConnector:
    """Each call pops the next outcome: a transport or an exception."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self, url: str):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


def _client(connector, clock=None, **kw):
    clock = clock or FakeClock()
    return RealtimeClient(
        "ws://test/ws",
        connector=connector,
        max_attempts=kw.pop("max_attempts", 3),
        min_interval=kw.pop("min_interval", 1.0),
        clock=clock,
        sleep=clock.sleep,
        **kw,
    )


class TestRealtimeClient:
    @pytest.mark.asyncio
    async def test_connect_and_receive(self):
        transport = FakeTransport()
        client = _client(ScriptedConnector(transport))
        received = []
        client.on("driverAssigned", received.append)

        assert await client.connect()
        assert client.state == ConnectionState.CONNECTED
        transport.feed("driverAssigned", {"booking_id": 5})
        await _settle()

        assert received == [{"booking_id": 5}]
        await client.disconnect()
        assert transport.closed
        assert client.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_handler_registered_twice_fires_once(self):
        transport = FakeTransport()
        client = _client(ScriptedConnector(transport))
        first, second = [], []
        client.on("rideStarted", first.append)
        client.on("rideStarted", second.append)

        await client.connect()
        transport.feed("rideStarted", {"booking_id": 5})
        await _settle()

        assert first == []
        assert second == [{"booking_id": 5}]
        await client.disconnect()

    def test_unknown_event_name_rejected(self):
        client = _client(ScriptedConnector())
        with pytest.raises(ValueError):
            client.on("somethingElse", print)

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_stream(self):
        transport = FakeTransport()
        client = _client(ScriptedConnector(transport))
        received = []

        def boom(data):
            raise RuntimeError("handler bug")

        client.on("rideStarted", boom)
        client.on("rideCompleted", received.append)
        await client.connect()
        transport.feed("rideStarted", {})
        transport.feed_raw("not json")
        transport.feed("rideCompleted", {"booking_id": 5})
        await _settle()

        assert received == [{"booking_id": 5}]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_non_object_frames_are_skipped(self):
        transport = FakeTransport()
        connector = ScriptedConnector(transport)
        client = _client(connector)
        received = []
        client.on("rideCompleted", received.append)

        await client.connect()
        transport.feed_raw("[1]")
        transport.feed_raw('"rideCompleted"')
        transport.feed("rideCompleted", {"booking_id": 5})
        await _settle()

        assert received == [{"booking_id": 5}]
        assert client.state == ConnectionState.CONNECTED
        assert connector.calls == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_retries_with_cooldown_then_gives_up(self):
        clock = FakeClock()
        connector = ScriptedConnector(OSError("refused"), OSError("refused"), OSError("refused"))
        client = _client(connector, clock=clock, min_interval=2.0)

        assert not await client.connect()

        assert connector.calls == 3
        assert clock.sleeps == [2.0, 2.0]
        assert client.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_while_connected_is_noop(self):
        connector = ScriptedConnector(FakeTransport())
        client = _client(connector)
        await client.connect()
        assert await client.connect()
        assert connector.calls == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_rooms_rejoined_and_refetch_after_drop(self):
        first, second = FakeTransport(), FakeTransport()
        refetches = []

        async def refetch():
            refetches.append(True)

        client = _client(ScriptedConnector(first, second), on_reconnect=refetch)
        await client.join_user_room(1)
        await client.join_user_room(1)
        assert await client.connect()
        await client.join_admin_room()
        assert refetches == []

        first.drop()
        await _settle()

        assert client.state == ConnectionState.CONNECTED
        expected = [{"action": "joinUserRoom", "id": 1}, {"action": "joinAdminRoom"}]
        assert first.sent == expected
        assert second.sent == expected
        assert refetches == [True]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_no_reconnect_after_disconnect(self):
        transport = FakeTransport()
        connector = ScriptedConnector(transport)
        client = _client(connector)
        await client.connect()

        await client.disconnect()
        await _settle()

        assert connector.calls == 1
        assert client.state == ConnectionState.DISCONNECTED
