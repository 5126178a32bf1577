"""
Booking service -- the lifecycle operations outside driver assignment.

Each operation reads the booking, asks the state machine for the
transition, has the store apply it atomically and publishes exactly one
event for the mutation.  A compare-and-swap miss (someone else changed the
booking in between) is re-read and re-evaluated once before giving up.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.config import settings
from src.domain import state_machine
from src.domain.eligibility import (
    RatingEligibility,
    RefundEligibility,
    rating_eligibility,
    refund_eligibility,
)
from src.domain.entities import Booking, Driver, Rating, utcnow
from src.domain.enums import BookingStatus, RaterRole, RefundStatus
from src.domain.exceptions import AssignmentConflict, NotEligible, NotFound
from src.domain.state_machine import Transition
from src.infrastructure.repositories import BookingStore
from src.realtime.bus import EventBus
from src.realtime.events import EventType, booking_event

from .cache import BookingCache, CacheEntry
from .payments import ManualRefundGateway, PaymentGateway, RefundReceipt

logger = logging.getLogger(__name__)


class BookingService:
    def __init__(
        self,
        store: BookingStore,
        cache: BookingCache,
        bus: EventBus,
        payments: Optional[PaymentGateway] = None,
        rating_window: timedelta = timedelta(days=settings.rating_window_days),
        gateway_timeout: float = settings.backend_timeout_seconds,
    ):
        self.store = store
        self.cache = cache
        self.bus = bus
        self.payments = payments or ManualRefundGateway()
        self.rating_window = rating_window
        self.gateway_timeout = gateway_timeout

    async def _load(self, booking_id: int) -> Booking:
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound("booking", booking_id)
        return booking

    async def _transition(
        self,
        booking_id: int,
        build: Callable[[Booking], Transition],
        rate_driver: Optional[tuple[int, int]] = None,
    ) -> tuple[Booking, Booking]:
        """Apply ``build(current)``; returns ``(previous, stored)``."""
        for _ in range(2):
            booking = await self._load(booking_id)
            transition = build(booking)
            if transition.is_noop:
                return booking, booking
            stored = await self.store.apply(transition, rate_driver=rate_driver)
            if stored is not None:
                self.cache.reconcile(stored)
                logger.info(
                    "Booking %s: %s -> %s",
                    booking_id,
                    booking.status.value,
                    stored.status.value,
                )
                return booking, stored
            logger.info("Booking %s changed underneath us, re-reading", booking_id)
        raise AssignmentConflict(booking_id, None, "booking changed concurrently")

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_booking(self, booking_id: int) -> CacheEntry:
        return await self.cache.read_through(booking_id, self.store.get_booking)

    async def refund_eligibility(self, booking_id: int) -> RefundEligibility:
        return refund_eligibility(await self._load(booking_id))

    async def rating_eligibility(
        self, booking_id: int, rater_role: RaterRole, now: Optional[datetime] = None
    ) -> RatingEligibility:
        return rating_eligibility(
            await self._load(booking_id), rater_role, now=now, window=self.rating_window
        )

    # ── Payment / confirmation ────────────────────────────────────────

    async def record_payment(
        self, booking_id: int, payment_id: str, succeeded: bool = True
    ) -> Booking:
        _, booking = await self._transition(
            booking_id,
            lambda b: state_machine.record_payment(b, payment_id, succeeded),
        )
        event_type = EventType.PAYMENT_RECEIVED if succeeded else EventType.BOOKING_UPDATED
        self.bus.publish(booking_event(event_type, booking, payment_id=payment_id))
        return booking

    async def confirm_booking(self, booking_id: int, admin_override: bool = False) -> Booking:
        previous, booking = await self._transition(
            booking_id, lambda b: state_machine.confirm(b, admin_override=admin_override)
        )
        self.bus.publish(
            booking_event(
                EventType.BOOKING_STATUS_CHANGED,
                booking,
                previous_status=previous.status.value,
            )
        )
        return booking

    # ── Trip ──────────────────────────────────────────────────────────

    async def start_trip(self, booking_id: int, driver_id: int) -> Booking:
        _, booking = await self._transition(
            booking_id, lambda b: state_machine.start(b, driver_id)
        )
        self.bus.publish(booking_event(EventType.RIDE_STARTED, booking))
        return booking

    async def complete_trip(self, booking_id: int, driver_id: int) -> Booking:
        _, booking = await self._transition(
            booking_id, lambda b: state_machine.complete(b, driver_id)
        )
        self.bus.publish(booking_event(EventType.RIDE_COMPLETED, booking))
        return booking

    # ── Cancellation / refund ─────────────────────────────────────────

    async def cancel_booking(
        self, booking_id: int, reason: str, is_refund_eligible: bool = False
    ) -> Booking:
        """
        Cancel the booking, releasing any bound driver.

        *is_refund_eligible* is the caller's request for a refund; it is only
        honoured when the booking's own eligibility agrees.
        """

        def build(booking: Booking) -> Transition:
            eligibility = refund_eligibility(booking)
            if is_refund_eligible and eligibility.cancellation_allowed and not eligibility.eligible:
                logger.warning(
                    "Booking %s: refund requested but not eligible (%s)",
                    booking_id,
                    eligibility.reason,
                )
            return state_machine.cancel(
                booking, reason, eligibility, initiate_refund=is_refund_eligible
            )

        previous, booking = await self._transition(booking_id, build)
        self.bus.publish(
            booking_event(
                EventType.RIDE_CANCELLED,
                booking,
                driver_id=previous.driver_id,
                reason=reason,
            )
        )
        if booking.refund_status == RefundStatus.INITIATED:
            booking = await self._refund(booking)
        return booking

    async def _refund(self, booking: Booking) -> Booking:
        amount = booking.refund_amount or 0.0
        self.bus.publish(booking_event(EventType.REFUND_INITIATED, booking, amount=amount))
        try:
            receipt = await asyncio.wait_for(
                self.payments.refund(booking, amount), timeout=self.gateway_timeout
            )
        except Exception as exc:
            logger.exception("Refund for booking %s failed", booking.id)
            receipt = RefundReceipt(success=False, amount=amount, error=str(exc))

        _, settled = await self._transition(
            booking.id,
            lambda b: state_machine.settle_refund(b, receipt.success, receipt.refund_id),
        )
        if receipt.success:
            logger.info("Refund %s processed for booking %s", receipt.refund_id, booking.id)
            self.bus.publish(
                booking_event(
                    EventType.REFUND_PROCESSED,
                    settled,
                    amount=amount,
                    refund_id=receipt.refund_id,
                )
            )
        else:
            self.bus.publish(
                booking_event(
                    EventType.REFUND_FAILED, settled, amount=amount, error=receipt.error
                )
            )
        return settled

    # ── Ratings ───────────────────────────────────────────────────────

    async def submit_rating(
        self,
        booking_id: int,
        rater_role: RaterRole,
        target_id: int,
        score: int,
        comment: Optional[str] = None,
    ) -> Booking:
        try:
            rating = Rating(score=score, comment=comment or "", created_at=utcnow())
        except ValueError as exc:
            raise NotEligible(str(exc)) from exc

        def build(booking: Booking) -> Transition:
            expected = booking.driver_id if rater_role == RaterRole.USER else booking.user_id
            if target_id != expected:
                raise NotEligible(
                    f"{'driver' if rater_role == RaterRole.USER else 'user'} "
                    f"{target_id} was not on this ride"
                )
            eligibility = rating_eligibility(
                booking, rater_role, window=self.rating_window
            )
            return state_machine.rate(booking, rater_role, rating, eligibility)

        rate_driver = (target_id, score) if rater_role == RaterRole.USER else None
        _, booking = await self._transition(booking_id, build, rate_driver=rate_driver)

        event = booking_event(
            EventType.RATING_SUBMITTED,
            booking,
            rater_role=rater_role.value,
            target_id=target_id,
            rating=score,
        )
        # the rated party and admin; the rater already knows
        if rater_role == RaterRole.USER:
            event = replace(event, notify_user=False)
        else:
            event = replace(event, notify_driver=False)
        self.bus.publish(event)
        return booking

    # ── Admin / driver updates ────────────────────────────────────────

    async def override_status(self, booking_id: int, status: BookingStatus) -> Booking:
        previous, booking = await self._transition(
            booking_id, lambda b: state_machine.override(b, status)
        )
        if previous == booking:
            return booking
        logger.warning(
            "Admin override on booking %s: %s -> %s",
            booking_id,
            previous.status.value,
            booking.status.value,
        )
        self.bus.publish(
            booking_event(
                EventType.BOOKING_STATUS_CHANGED,
                booking,
                driver_id=previous.driver_id,
                previous_status=previous.status.value,
                admin_override=True,
            )
        )
        return booking

    async def update_driver_location(self, driver_id: int, lat: float, lng: float) -> Driver:
        driver, booking = await self.store.update_location(driver_id, lat, lng)
        if driver is None:
            raise NotFound("driver", driver_id)
        if booking is not None:
            self.cache.reconcile(booking)
            self.bus.publish(
                booking_event(
                    EventType.DRIVER_LOCATION_UPDATED, booking, lat=lat, lng=lng
                )
            )
        return driver
