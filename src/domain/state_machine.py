"""
Booking state machine
=====================

::

    pending -> confirmed -> assigned -> inProgress -> completed
       \\___________\\____________\\-> cancelled

Every function here is pure: it takes the current booking (plus whatever
the guard needs) and returns a ``Transition`` describing the new booking,
the status the store must still see for the write to apply (compare-and-
swap guard) and the matching driver-side change, if any.  Nothing is
written here; ``BookingStore.apply`` performs the one atomic write.

Invariant kept by every transition:
``driver_id is not None  <=>  status in {assigned, inProgress, completed}``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Mapping, Optional

from .eligibility import RatingEligibility, RefundEligibility
from .entities import Booking, CabType, Driver, Rating, utcnow
from .enums import (
    BOOKING_TRANSITIONS,
    DRIVER_ACTIVE_STATUSES,
    DRIVER_BOUND_STATUSES,
    BookingStatus,
    DriverStatus,
    PaymentStatus,
    RaterRole,
    RefundStatus,
)
from .exceptions import InvalidTransition, NotEligible
from .matching import is_compatible


@dataclass(frozen=True)
class DriverChange:
    driver_id: int
    new_status: DriverStatus
    current_booking_id: Optional[int]
    # strict: the write fails unless the driver is still in expected_status.
    # non-strict: applied only if the driver still points at this booking.
    expected_status: Optional[DriverStatus] = None
    strict: bool = True
    completed_ride: bool = False


@dataclass(frozen=True)
class Transition:
    previous: Booking
    booking: Booking
    driver_change: Optional[DriverChange] = None

    @property
    def expected_status(self) -> BookingStatus:
        return self.previous.status

    @property
    def is_noop(self) -> bool:
        return self.previous == self.booking and self.driver_change is None


def _check_table(booking: Booking, target: BookingStatus) -> None:
    if target not in BOOKING_TRANSITIONS.get(booking.status, set()):
        raise InvalidTransition(booking.status, target)


def _release(booking: Booking, completed_ride: bool = False) -> Optional[DriverChange]:
    if booking.driver_id is None or booking.status not in DRIVER_ACTIVE_STATUSES:
        return None
    return DriverChange(
        driver_id=booking.driver_id,
        new_status=DriverStatus.AVAILABLE,
        current_booking_id=None,
        strict=False,
        completed_ride=completed_ride,
    )


def _check_driver(booking: Booking, driver_id: int, target: BookingStatus) -> None:
    if booking.driver_id != driver_id:
        raise InvalidTransition(
            booking.status, target, f"driver {driver_id} is not assigned to this booking"
        )


# ── Transitions ───────────────────────────────────────────────────────


def confirm(
    booking: Booking, admin_override: bool = False, now: Optional[datetime] = None
) -> Transition:
    _check_table(booking, BookingStatus.CONFIRMED)
    if booking.status != BookingStatus.PENDING:
        raise InvalidTransition(booking.status, BookingStatus.CONFIRMED)
    if booking.payment_status != PaymentStatus.COMPLETED and not admin_override:
        raise InvalidTransition(
            booking.status, BookingStatus.CONFIRMED, "payment not recorded"
        )
    return Transition(
        booking,
        replace(booking, status=BookingStatus.CONFIRMED, confirmed_at=now or utcnow()),
    )


def record_payment(
    booking: Booking,
    payment_id: str,
    succeeded: bool,
    now: Optional[datetime] = None,
) -> Transition:
    """Store the gateway's verdict; a successful payment confirms a pending booking."""
    if booking.status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED):
        raise InvalidTransition(booking.status, booking.status, "booking is closed")
    if not succeeded:
        return Transition(
            booking,
            replace(booking, payment_status=PaymentStatus.FAILED, payment_id=payment_id),
        )
    paid = replace(booking, payment_status=PaymentStatus.COMPLETED, payment_id=payment_id)
    if booking.status == BookingStatus.PENDING:
        paid = replace(paid, status=BookingStatus.CONFIRMED, confirmed_at=now or utcnow())
    return Transition(booking, paid)


def assign(
    booking: Booking,
    driver: Driver,
    cab_types: Mapping[int, CabType],
    now: Optional[datetime] = None,
) -> Transition:
    if booking.status != BookingStatus.CONFIRMED:
        raise InvalidTransition(booking.status, BookingStatus.ASSIGNED)
    if driver.status != DriverStatus.AVAILABLE:
        raise InvalidTransition(
            booking.status, BookingStatus.ASSIGNED, f"driver is {driver.status.value}"
        )
    if not is_compatible(booking, driver, cab_types):
        raise InvalidTransition(
            booking.status, BookingStatus.ASSIGNED, "vehicle type does not match cab type"
        )
    return Transition(
        booking,
        replace(
            booking,
            status=BookingStatus.ASSIGNED,
            driver_id=driver.id,
            assigned_at=now or utcnow(),
        ),
        DriverChange(
            driver_id=driver.id,
            new_status=DriverStatus.ASSIGNED,
            current_booking_id=booking.id,
            expected_status=DriverStatus.AVAILABLE,
        ),
    )


def unassign(booking: Booking) -> Transition:
    """Drop the driver; back to confirmed if paid, else pending."""
    if booking.status != BookingStatus.ASSIGNED:
        raise InvalidTransition(booking.status, BookingStatus.CONFIRMED, "no driver to remove")
    target = (
        BookingStatus.CONFIRMED
        if booking.payment_status == PaymentStatus.COMPLETED
        else BookingStatus.PENDING
    )
    return Transition(
        booking,
        replace(
            booking,
            status=target,
            driver_id=None,
            assigned_at=None,
            current_lat=None,
            current_lng=None,
        ),
        _release(booking),
    )


def start(booking: Booking, driver_id: int, now: Optional[datetime] = None) -> Transition:
    _check_table(booking, BookingStatus.IN_PROGRESS)
    _check_driver(booking, driver_id, BookingStatus.IN_PROGRESS)
    return Transition(
        booking,
        replace(booking, status=BookingStatus.IN_PROGRESS, started_at=now or utcnow()),
    )


def complete(booking: Booking, driver_id: int, now: Optional[datetime] = None) -> Transition:
    _check_table(booking, BookingStatus.COMPLETED)
    _check_driver(booking, driver_id, BookingStatus.COMPLETED)
    return Transition(
        booking,
        replace(booking, status=BookingStatus.COMPLETED, completed_at=now or utcnow()),
        _release(booking, completed_ride=True),
    )


def cancel(
    booking: Booking,
    reason: str,
    eligibility: RefundEligibility,
    initiate_refund: bool = False,
    now: Optional[datetime] = None,
) -> Transition:
    if not eligibility.cancellation_allowed:
        raise NotEligible(eligibility.reason)
    _check_table(booking, BookingStatus.CANCELLED)

    refund_status = booking.refund_status
    if initiate_refund and eligibility.eligible:
        refund_status = RefundStatus.INITIATED

    return Transition(
        booking,
        replace(
            booking,
            status=BookingStatus.CANCELLED,
            driver_id=None,
            cancelled_at=now or utcnow(),
            cancellation_reason=reason,
            refund_status=refund_status,
            refund_amount=booking.total_amount
            if refund_status == RefundStatus.INITIATED
            else booking.refund_amount,
        ),
        _release(booking),
    )


def settle_refund(
    booking: Booking, succeeded: bool, refund_id: Optional[str] = None
) -> Transition:
    if booking.refund_status != RefundStatus.INITIATED:
        raise InvalidTransition(
            booking.status, booking.status, f"refund is {booking.refund_status.value}"
        )
    return Transition(
        booking,
        replace(
            booking,
            refund_status=RefundStatus.PROCESSED if succeeded else RefundStatus.FAILED,
            refund_id=refund_id,
        ),
    )


def rate(
    booking: Booking,
    rater_role: RaterRole,
    rating: Rating,
    eligibility: RatingEligibility,
) -> Transition:
    if not eligibility.needed:
        raise NotEligible(eligibility.reason)
    if rater_role == RaterRole.USER:
        return Transition(booking, replace(booking, user_rating=rating))
    return Transition(booking, replace(booking, driver_rating=rating))


def override(
    booking: Booking, target: BookingStatus, now: Optional[datetime] = None
) -> Transition:
    """
    Admin escape hatch: any status to any status, table not consulted.

    The driver invariant still holds: entering a driver-bound status needs a
    driver already on the booking, leaving one releases it.
    """
    if target == booking.status:
        return Transition(booking, booking)

    now = now or utcnow()
    bound_before = booking.status in DRIVER_BOUND_STATUSES
    bound_after = target in DRIVER_BOUND_STATUSES

    if bound_after and booking.driver_id is None:
        raise InvalidTransition(booking.status, target, "no driver on booking")

    changes: dict = {"status": target}
    changes["completed_at"] = (
        (booking.completed_at or now) if target == BookingStatus.COMPLETED else None
    )
    if target == BookingStatus.CANCELLED and booking.cancelled_at is None:
        changes["cancelled_at"] = now
    if target == BookingStatus.CONFIRMED and booking.confirmed_at is None:
        changes["confirmed_at"] = now

    driver_change: Optional[DriverChange] = None
    active_before = booking.status in DRIVER_ACTIVE_STATUSES
    active_after = target in DRIVER_ACTIVE_STATUSES

    if bound_before and not bound_after:
        changes["driver_id"] = None
        changes["assigned_at"] = None
        driver_change = _release(booking)
    elif active_before and not active_after:
        # assigned/inProgress -> completed
        driver_change = _release(booking, completed_ride=True)
    elif not active_before and active_after:
        # completed -> assigned/inProgress: the driver is busy again
        driver_change = DriverChange(
            driver_id=booking.driver_id,
            new_status=DriverStatus.ASSIGNED,
            current_booking_id=booking.id,
            expected_status=DriverStatus.AVAILABLE,
        )

    return Transition(booking, replace(booking, **changes), driver_change)
