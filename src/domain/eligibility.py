"""
Eligibility engine -- pure refund / cancellation / rating decisions.

No I/O and no clock reads unless ``now`` is omitted; callers (services and
clients rendering available actions) get the same answer for the same
booking.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .entities import Booking, utcnow
from .enums import BookingStatus, PaymentStatus, RaterRole, RefundStatus

RATING_WINDOW = timedelta(days=7)


@dataclass(frozen=True)
class RefundEligibility:
    eligible: bool
    full_refund: bool
    cancellation_allowed: bool
    reason: str


@dataclass(frozen=True)
class RatingEligibility:
    needed: bool
    reason: str


def refund_eligibility(booking: Booking) -> RefundEligibility:
    status = booking.status

    if status == BookingStatus.COMPLETED:
        return RefundEligibility(False, False, False, "Completed rides cannot be cancelled")
    if status == BookingStatus.IN_PROGRESS:
        return RefundEligibility(False, False, False, "Ride in progress cannot be cancelled")

    if status == BookingStatus.CANCELLED:
        return RefundEligibility(False, False, False, "Booking already cancelled")
    if booking.refund_status == RefundStatus.PROCESSED:
        return RefundEligibility(False, False, False, "Refund already processed")

    if booking.payment_status != PaymentStatus.COMPLETED:
        # nothing to refund, but the booking can still be dropped
        return RefundEligibility(False, False, True, "Payment not completed")

    if status in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
        return RefundEligibility(
            True, True, True, "Booking can be cancelled with full refund"
        )

    # assigned: the driver has already committed to the ride
    return RefundEligibility(
        False, False, True, "Driver already assigned; cancellation without refund"
    )


def rating_eligibility(
    booking: Booking,
    rater_role: RaterRole,
    now: Optional[datetime] = None,
    window: timedelta = RATING_WINDOW,
) -> RatingEligibility:
    if booking.status != BookingStatus.COMPLETED:
        return RatingEligibility(False, "Only completed rides can be rated")

    existing = (
        booking.user_rating if rater_role == RaterRole.USER else booking.driver_rating
    )
    if existing is not None:
        return RatingEligibility(False, "Already rated")

    if booking.completed_at is not None:
        now = now or utcnow()
        if now - booking.completed_at > window:
            return RatingEligibility(
                False, f"Rating window expired ({window.days} days)"
            )

    if rater_role == RaterRole.USER:
        return RatingEligibility(True, "Please rate your driver")
    return RatingEligibility(True, "Please rate your passenger")
