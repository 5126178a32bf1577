"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) per test so tests run
without Docker / PostgreSQL / Redis, while separate sessions still see
each other's commits (needed for the race tests).
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.domain import state_machine
from src.domain.eligibility import refund_eligibility
from src.domain.entities import Booking, ById, ByName, CabType, Driver
from src.domain.enums import BookingStatus, DriverStatus
from src.domain.matching import is_compatible
from src.infrastructure.database import Base, create_session_factory
from src.infrastructure.repositories import BookingStore
from src.services.container import Services, build_services
from src.services.dispatch import RetryPolicy


class RecordingSleep:
    """Stands in for ``asyncio.sleep``; remembers requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Seeder:
    """Creates cab types, users, drivers and bookings in a known state."""

    def __init__(self, store: BookingStore):
        self.store = store
        self.cab_types: dict[str, CabType] = {}
        self.user_id: Optional[int] = None
        self._drivers = 0

    async def setup(self) -> Seeder:
        for name, capacity in (("Sedan", 4), ("SUV", 6), ("Mini", 4)):
            self.cab_types[name] = await self.store.create_cab_type(name, capacity)
        self.user_id = await self.store.create_user("Test Rider", "rider@example.com")
        return self

    async def driver(
        self,
        cab_type: Optional[str] = "Sedan",
        name_only: Optional[str] = None,
        status: DriverStatus = DriverStatus.AVAILABLE,
        rating: float = 4.5,
        total_rides: int = 10,
    ) -> Driver:
        self._drivers += 1
        refs = []
        if cab_type is not None:
            refs.append(ById(self.cab_types[cab_type].id))
        if name_only is not None:
            refs.append(ByName(name_only))
        return await self.store.create_driver(
            Driver(
                name=f"Driver {self._drivers}",
                vehicle_types=tuple(refs),
                vehicle_number=f"MH01ZZ{self._drivers:04d}",
                status=status,
                rating=rating,
                total_rides=total_rides,
            )
        )

    async def booking(
        self,
        status: BookingStatus = BookingStatus.CONFIRMED,
        cab_type: str = "Sedan",
        driver: Optional[Driver] = None,
        amount: float = 500.0,
        paid: bool = True,
    ) -> Booking:
        """A booking walked through the state machine up to *status*."""
        booking = await self.store.create_booking(
            Booking(
                user_id=self.user_id,
                pickup_location="Airport T2",
                drop_location="Andheri West",
                cab_type_id=self.cab_types[cab_type].id,
                total_amount=amount,
            )
        )
        if status == BookingStatus.PENDING:
            return booking
        if paid:
            booking = await self.store.apply(
                state_machine.record_payment(booking, f"pay_{booking.id}", True)
            )
        else:
            booking = await self.store.apply(
                state_machine.confirm(booking, admin_override=True)
            )
        if status == BookingStatus.CONFIRMED:
            return booking

        if status == BookingStatus.CANCELLED:
            return await self.store.apply(
                state_machine.cancel(booking, "test", refund_eligibility(booking))
            )

        driver = driver or await self.driver(cab_type)
        cab_types = await self.store.cab_types()
        assert is_compatible(booking, driver, cab_types)
        booking = await self.store.apply(state_machine.assign(booking, driver, cab_types))
        if status == BookingStatus.ASSIGNED:
            return booking
        booking = await self.store.apply(state_machine.start(booking, driver.id))
        if status == BookingStatus.IN_PROGRESS:
            return booking
        return await self.store.apply(state_machine.complete(booking, driver.id))


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database file, yield a factory, then dispose."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory) -> BookingStore:
    return BookingStore(session_factory)


@pytest_asyncio.fixture
async def seed(store) -> Seeder:
    return await Seeder(store).setup()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def services(session_factory, sleep) -> AsyncGenerator[Services, None]:
    services = build_services(
        session_factory,
        policy=RetryPolicy(max_attempts=3, backoff_base=1.0, timeout=5.0),
        sleep=sleep,
    )
    await services.bus.start()
    yield services
    await services.bus.stop()


class FakeConnection:
    """Server-side client connection that records what it is sent."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: list[dict] = []

    async def send_json(self, data) -> None:
        if self.fail:
            raise ConnectionError("client went away")
        self.messages.append(data)

    def events(self) -> list[str]:
        return [m["event"] for m in self.messages]


@pytest.fixture
def connection_factory():
    return FakeConnection
