"""
Assignment matcher -- binds and unbinds drivers atomically.

``assign`` pre-checks the obvious race outcomes (booking already bound,
driver already busy) so callers get ``AssignmentConflict`` rather than a
generic transition error, then lets the state machine check the remaining
guards and the store apply the compare-and-swap.  A CAS miss means someone
else got there first: also ``AssignmentConflict``.
"""

from __future__ import annotations

import logging

from src.domain import state_machine
from src.domain.entities import Booking, Driver
from src.domain.enums import BookingStatus, DriverStatus
from src.domain.exceptions import AssignmentConflict, NotFound
from src.domain.matching import find_candidates
from src.infrastructure.repositories import BookingStore

logger = logging.getLogger(__name__)

_UNBOUND = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class AssignmentMatcher:
    def __init__(self, store: BookingStore):
        self.store = store

    async def _booking(self, booking_id: int) -> Booking:
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound("booking", booking_id)
        return booking

    async def _driver(self, driver_id: int) -> Driver:
        driver = await self.store.get_driver(driver_id)
        if driver is None:
            raise NotFound("driver", driver_id)
        return driver

    async def candidates(self, booking_id: int) -> list[Driver]:
        """Available drivers whose vehicle matches the booking's cab type."""
        booking = await self._booking(booking_id)
        drivers = await self.store.list_drivers(status=DriverStatus.AVAILABLE)
        return find_candidates(booking, drivers, await self.store.cab_types())

    async def assign(self, booking_id: int, driver_id: int) -> Booking:
        booking = await self._booking(booking_id)
        driver = await self._driver(driver_id)

        if booking.status == BookingStatus.ASSIGNED:
            logger.info(
                "Assign %s -> booking %s rejected: already bound to driver %s",
                driver_id,
                booking_id,
                booking.driver_id,
            )
            raise AssignmentConflict(
                booking_id, driver_id, f"booking already assigned to driver {booking.driver_id}"
            )
        if driver.status != DriverStatus.AVAILABLE:
            logger.info(
                "Assign %s -> booking %s rejected: driver is %s",
                driver_id,
                booking_id,
                driver.status.value,
            )
            raise AssignmentConflict(
                booking_id, driver_id, f"driver is {driver.status.value}"
            )

        transition = state_machine.assign(booking, driver, await self.store.cab_types())
        stored = await self.store.apply(transition)
        if stored is None:
            logger.info(
                "Assign %s -> booking %s lost the race", driver_id, booking_id
            )
            raise AssignmentConflict(
                booking_id, driver_id, "booking or driver changed concurrently"
            )

        logger.info("Driver %s assigned to booking %s", driver_id, booking_id)
        return stored

    async def unassign(self, booking_id: int) -> Booking:
        """Release the bound driver.  Already-unbound bookings come back as-is."""
        booking = await self._booking(booking_id)
        if booking.status in _UNBOUND and booking.driver_id is None:
            return booking

        transition = state_machine.unassign(booking)
        stored = await self.store.apply(transition)
        if stored is not None:
            logger.info(
                "Driver %s removed from booking %s (now %s)",
                booking.driver_id,
                booking_id,
                stored.status.value,
            )
            return stored

        current = await self._booking(booking_id)
        if current.status in _UNBOUND and current.driver_id is None:
            return current
        raise AssignmentConflict(
            booking_id, booking.driver_id, "booking changed concurrently"
        )
