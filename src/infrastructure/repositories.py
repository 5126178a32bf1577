"""
Booking store -- the single source of truth for bookings and drivers.

Every public method opens its own session (unit-of-work) from the injected
factory, so each call is one atomic backend round-trip.  Reads return
domain entities, never ORM rows.

``apply`` is the only writer of ``status`` / ``driver_id`` / refund and
rating state.  It writes only the columns the transition changed and
performs a compare-and-swap on each of them::

    UPDATE bookings SET <changed> WHERE id = :id AND status = :expected
        AND driver_id IS NOT DISTINCT FROM :expected_driver
        AND <each changed column> IS NOT DISTINCT FROM :its_prior_value

The matching driver-side update runs in the same transaction.  Writers
that touch different columns (a user and a driver rating) both land,
while a second write of the same column misses.  If either
side matches no row the whole transaction is rolled back and ``None`` is
returned; callers decide whether that is a conflict or a re-read.

Connection-level failures surface as ``TransientBackendError``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import BookingModel, CabTypeModel, DriverModel, UserModel
from src.domain.entities import (
    Booking,
    ById,
    ByName,
    CabType,
    Driver,
    Rating,
    generate_booking_code,
)
from src.domain.enums import BookingStatus, DriverStatus
from src.domain.exceptions import TransientBackendError
from src.domain.state_machine import Transition


class _CasMiss(Exception):
    """Internal: abort the transaction, a guard matched no row."""


class BookingStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, write: bool = False) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                if write:
                    async with session.begin():
                        yield session
                else:
                    yield session
        except (OperationalError, InterfaceError) as exc:
            raise TransientBackendError(f"Booking store unavailable: {exc}") from exc

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_booking(self, booking_id: int) -> Optional[Booking]:
        async with self._session() as session:
            row = await session.get(BookingModel, booking_id)
            return _to_booking(row) if row else None

    async def get_booking_by_code(self, code: str) -> Optional[Booking]:
        async with self._session() as session:
            result = await session.execute(
                select(BookingModel).where(BookingModel.code == code)
            )
            row = result.scalar_one_or_none()
            return _to_booking(row) if row else None

    async def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        unassigned_only: bool = False,
    ) -> list[Booking]:
        query = select(BookingModel).order_by(BookingModel.created_at, BookingModel.id)
        if status is not None:
            query = query.where(BookingModel.status == status)
        if unassigned_only:
            query = query.where(BookingModel.driver_id.is_(None))
        async with self._session() as session:
            result = await session.execute(query)
            return [_to_booking(r) for r in result.scalars().all()]

    async def get_driver(self, driver_id: int) -> Optional[Driver]:
        async with self._session() as session:
            row = await session.get(DriverModel, driver_id)
            return _to_driver(row) if row else None

    async def list_drivers(self, status: Optional[DriverStatus] = None) -> list[Driver]:
        query = select(DriverModel).order_by(DriverModel.id)
        if status is not None:
            query = query.where(DriverModel.status == status)
        async with self._session() as session:
            result = await session.execute(query)
            return [_to_driver(r) for r in result.scalars().all()]

    async def cab_types(self) -> dict[int, CabType]:
        async with self._session() as session:
            result = await session.execute(select(CabTypeModel))
            return {
                r.id: CabType(
                    id=r.id,
                    name=r.name,
                    capacity=r.capacity,
                    description=r.description or "",
                )
                for r in result.scalars().all()
            }

    # ── Creation (booking-creation flow / seeding) ────────────────────

    async def create_user(self, name: str, email: str, phone: Optional[str] = None) -> int:
        async with self._session(write=True) as session:
            user = UserModel(name=name, email=email, phone=phone)
            session.add(user)
            await session.flush()
            return user.id

    async def create_cab_type(
        self, name: str, capacity: int = 4, description: str = ""
    ) -> CabType:
        async with self._session(write=True) as session:
            row = CabTypeModel(name=name, capacity=capacity, description=description)
            session.add(row)
            await session.flush()
            return CabType(id=row.id, name=name, capacity=capacity, description=description)

    async def create_driver(self, driver: Driver) -> Driver:
        type_id, type_name = _split_vehicle_types(driver)
        async with self._session(write=True) as session:
            row = DriverModel(
                name=driver.name,
                phone=driver.phone,
                email=driver.email,
                vehicle_type_id=type_id,
                vehicle_type_name=type_name,
                vehicle_number=driver.vehicle_number,
                vehicle_model=driver.vehicle_model,
                status=driver.status,
                current_booking_id=driver.current_booking_id,
                rating=driver.rating,
                rating_count=driver.rating_count,
                total_rides=driver.total_rides,
            )
            session.add(row)
            await session.flush()
            return _to_driver(row)

    async def create_booking(self, booking: Booking) -> Booking:
        async with self._session(write=True) as session:
            row = BookingModel(
                code=booking.code or generate_booking_code(),
                user_id=booking.user_id,
                pickup_location=booking.pickup_location,
                drop_location=booking.drop_location,
                cab_type_id=booking.cab_type_id,
                pickup_at=booking.pickup_at,
                **_mutable_values(booking),
            )
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return _to_booking(row)

    # ── Atomic writes ─────────────────────────────────────────────────

    async def apply(
        self,
        transition: Transition,
        rate_driver: Optional[tuple[int, int]] = None,
    ) -> Optional[Booking]:
        """
        Persist *transition* atomically.  Returns the booking as stored
        (columns other writers changed meanwhile included), or ``None`` if
        the booking or a strict driver guard no longer matched.

        *rate_driver* ``(driver_id, score)`` folds a new score into the
        driver's running average within the same transaction.
        """
        previous, new = transition.previous, transition.booking
        before = _mutable_values(previous)
        changed = {
            column: value
            for column, value in _mutable_values(new).items()
            if value != before[column]
        }
        try:
            async with self._session(write=True) as session:
                guard = [
                    BookingModel.id == previous.id,
                    _matches(BookingModel.status, previous.status),
                    _matches(BookingModel.driver_id, previous.driver_id),
                ]
                guard.extend(
                    _matches(getattr(BookingModel, column), before[column])
                    for column in changed
                    if column not in _UNGUARDED
                )

                result = await session.execute(
                    update(BookingModel)
                    .where(*guard)
                    .values(**{"status": new.status, **changed})
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise _CasMiss()

                change = transition.driver_change
                if change is not None:
                    values = {
                        "status": change.new_status,
                        "current_booking_id": change.current_booking_id,
                    }
                    if change.completed_ride:
                        values["total_rides"] = DriverModel.total_rides + 1
                    stmt = update(DriverModel).where(DriverModel.id == change.driver_id)
                    if change.strict:
                        stmt = stmt.where(DriverModel.status == change.expected_status)
                    else:
                        stmt = stmt.where(DriverModel.current_booking_id == previous.id)
                    result = await session.execute(
                        stmt.values(**values).execution_options(synchronize_session=False)
                    )
                    if change.strict and result.rowcount != 1:
                        raise _CasMiss()

                if rate_driver is not None:
                    driver_id, score = rate_driver
                    await session.execute(
                        update(DriverModel)
                        .where(DriverModel.id == driver_id)
                        .values(
                            rating=(
                                DriverModel.rating * DriverModel.rating_count + score
                            )
                            / (DriverModel.rating_count + 1),
                            rating_count=DriverModel.rating_count + 1,
                        )
                        .execution_options(synchronize_session=False)
                    )

                row = await session.get(BookingModel, previous.id)
                stored = _to_booking(row)
        except _CasMiss:
            return None
        return stored

    async def update_location(
        self, driver_id: int, lat: float, lng: float
    ) -> tuple[Optional[Driver], Optional[Booking]]:
        """Move a driver; mirror the position onto its active booking."""
        async with self._session(write=True) as session:
            driver = await session.get(DriverModel, driver_id)
            if driver is None:
                return None, None
            driver.current_lat = lat
            driver.current_lng = lng

            booking = None
            if driver.current_booking_id is not None:
                booking = await session.get(BookingModel, driver.current_booking_id)
                if booking is not None and booking.driver_id == driver_id:
                    booking.current_lat = lat
                    booking.current_lng = lng
                else:
                    booking = None
            await session.flush()
            return _to_driver(driver), _to_booking(booking) if booking else None

    async def set_driver_status(self, driver_id: int, status: DriverStatus) -> bool:
        """Online / offline toggle; never touches a driver bound to a booking."""
        async with self._session(write=True) as session:
            result = await session.execute(
                update(DriverModel)
                .where(
                    DriverModel.id == driver_id,
                    DriverModel.status != DriverStatus.ASSIGNED,
                )
                .values(status=status)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1


# ── Mapping helpers ───────────────────────────────────────────────────


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _rating(score, comment, created_at) -> Optional[Rating]:
    if score is None:
        return None
    return Rating(score=score, comment=comment or "", created_at=_aware(created_at))


def _to_booking(row: BookingModel) -> Booking:
    return Booking(
        id=row.id,
        code=row.code,
        user_id=row.user_id,
        pickup_location=row.pickup_location,
        drop_location=row.drop_location,
        cab_type_id=row.cab_type_id,
        pickup_at=_aware(row.pickup_at),
        status=BookingStatus(row.status),
        driver_id=row.driver_id,
        total_amount=row.total_amount,
        payment_status=row.payment_status,
        payment_id=row.payment_id,
        refund_status=row.refund_status,
        refund_id=row.refund_id,
        refund_amount=row.refund_amount,
        user_rating=_rating(row.user_rating, row.user_rating_comment, row.user_rated_at),
        driver_rating=_rating(
            row.driver_rating, row.driver_rating_comment, row.driver_rated_at
        ),
        created_at=_aware(row.created_at),
        confirmed_at=_aware(row.confirmed_at),
        assigned_at=_aware(row.assigned_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        cancelled_at=_aware(row.cancelled_at),
        cancellation_reason=row.cancellation_reason,
        current_lat=row.current_lat,
        current_lng=row.current_lng,
    )


# Columns written with a transition but never compared: timestamps move
# together with a guarded status or rating column, and the position is
# only ever last-writer-wins.
_UNGUARDED = frozenset(
    {
        "confirmed_at",
        "assigned_at",
        "started_at",
        "completed_at",
        "cancelled_at",
        "user_rated_at",
        "driver_rated_at",
        "current_lat",
        "current_lng",
    }
)


def _matches(column, value):
    return column.is_(None) if value is None else column == value


def _mutable_values(booking: Booking) -> dict:
    user_rating, driver_rating = booking.user_rating, booking.driver_rating
    return {
        "status": booking.status,
        "driver_id": booking.driver_id,
        "total_amount": booking.total_amount,
        "payment_status": booking.payment_status,
        "payment_id": booking.payment_id,
        "refund_status": booking.refund_status,
        "refund_id": booking.refund_id,
        "refund_amount": booking.refund_amount,
        "user_rating": user_rating.score if user_rating else None,
        "user_rating_comment": user_rating.comment if user_rating else None,
        "user_rated_at": user_rating.created_at if user_rating else None,
        "driver_rating": driver_rating.score if driver_rating else None,
        "driver_rating_comment": driver_rating.comment if driver_rating else None,
        "driver_rated_at": driver_rating.created_at if driver_rating else None,
        "confirmed_at": booking.confirmed_at,
        "assigned_at": booking.assigned_at,
        "started_at": booking.started_at,
        "completed_at": booking.completed_at,
        "cancelled_at": booking.cancelled_at,
        "cancellation_reason": booking.cancellation_reason,
        "current_lat": booking.current_lat,
        "current_lng": booking.current_lng,
    }


def _to_driver(row: DriverModel) -> Driver:
    refs = []
    if row.vehicle_type_id is not None:
        refs.append(ById(row.vehicle_type_id))
    if row.vehicle_type_name:
        refs.append(ByName(row.vehicle_type_name))
    return Driver(
        id=row.id,
        name=row.name or "",
        phone=row.phone or "",
        email=row.email or "",
        vehicle_types=tuple(refs),
        vehicle_number=row.vehicle_number,
        vehicle_model=row.vehicle_model or "",
        status=DriverStatus(row.status),
        current_booking_id=row.current_booking_id,
        rating=row.rating or 0.0,
        rating_count=row.rating_count or 0,
        total_rides=row.total_rides or 0,
        current_lat=row.current_lat,
        current_lng=row.current_lng,
    )


def _split_vehicle_types(driver: Driver) -> tuple[Optional[int], Optional[str]]:
    type_id = next((r.cab_type_id for r in driver.vehicle_types if isinstance(r, ById)), None)
    type_name = next((r.name for r in driver.vehicle_types if isinstance(r, ByName)), None)
    return type_id, type_name
