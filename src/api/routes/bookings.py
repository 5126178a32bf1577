"""
Booking endpoints
=================

GET  /api/v1/bookings/{booking_id}             -- read booking (provisional view flagged)
GET  /api/v1/bookings/{booking_id}/eligibility -- refund + rating eligibility
GET  /api/v1/bookings/{booking_id}/candidates  -- compatible available drivers
POST /api/v1/bookings/{booking_id}/payment     -- record the payment result
POST /api/v1/bookings/{booking_id}/confirm     -- pending -> confirmed
POST /api/v1/bookings/{booking_id}/cancel      -- cancel, refund if eligible
POST /api/v1/bookings/{booking_id}/ratings     -- rate the other party
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_service, get_matcher
from src.api.middleware import limiter
from src.api.schemas import (
    BookingResponse,
    CancelRequest,
    ConfirmRequest,
    DriverResponse,
    EligibilityResponse,
    ErrorResponse,
    PaymentRequest,
    RatingEligibilityResponse,
    RatingRequest,
    RefundEligibilityResponse,
)
from src.config import settings
from src.domain.enums import RaterRole
from src.services.assignment import AssignmentMatcher
from src.services.bookings import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get a booking",
    description="``pending_sync`` is true while an assignment is still being retried.",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    entry = await service.get_booking(booking_id)
    return BookingResponse.from_domain(entry.booking, entry.pending_sync)


@router.get(
    "/{booking_id}/eligibility",
    response_model=EligibilityResponse,
    summary="Refund and rating eligibility",
)
@limiter.limit(settings.rate_limit)
async def get_eligibility(
    request: Request,
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    refund = await service.refund_eligibility(booking_id)
    user_rating = await service.rating_eligibility(booking_id, RaterRole.USER)
    driver_rating = await service.rating_eligibility(booking_id, RaterRole.DRIVER)
    return EligibilityResponse(
        booking_id=booking_id,
        refund=RefundEligibilityResponse(
            eligible=refund.eligible,
            full_refund=refund.full_refund,
            cancellation_allowed=refund.cancellation_allowed,
            reason=refund.reason,
        ),
        user_rating=RatingEligibilityResponse(
            needed=user_rating.needed, reason=user_rating.reason
        ),
        driver_rating=RatingEligibilityResponse(
            needed=driver_rating.needed, reason=driver_rating.reason
        ),
    )


@router.get(
    "/{booking_id}/candidates",
    response_model=list[DriverResponse],
    summary="Available drivers with a matching vehicle",
)
@limiter.limit(settings.rate_limit)
async def get_candidates(
    request: Request,
    booking_id: int,
    matcher: AssignmentMatcher = Depends(get_matcher),
):
    drivers = await matcher.candidates(booking_id)
    return [DriverResponse.model_validate(d) for d in drivers]


@router.post(
    "/{booking_id}/payment",
    response_model=BookingResponse,
    summary="Record a payment result",
    description="A successful payment confirms a pending booking.",
)
@limiter.limit(settings.rate_limit)
async def record_payment(
    request: Request,
    booking_id: int,
    body: PaymentRequest,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.record_payment(booking_id, body.payment_id, body.succeeded)
    return BookingResponse.from_domain(booking)


@router.post(
    "/{booking_id}/confirm",
    response_model=BookingResponse,
    summary="Confirm a booking",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def confirm_booking(
    request: Request,
    booking_id: int,
    body: Optional[ConfirmRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    admin_override = body.admin_override if body else False
    booking = await service.confirm_booking(booking_id, admin_override=admin_override)
    return BookingResponse.from_domain(booking)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel a booking",
    description=(
        "Releases any assigned driver.  With ``is_refund_eligible`` the full "
        "amount is refunded when the booking qualifies."
    ),
    responses={422: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: int,
    body: CancelRequest,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.cancel_booking(
        booking_id, body.reason, is_refund_eligible=body.is_refund_eligible
    )
    return BookingResponse.from_domain(booking)


@router.post(
    "/{booking_id}/ratings",
    response_model=BookingResponse,
    status_code=201,
    summary="Rate the other party of a completed ride",
    responses={422: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def submit_rating(
    request: Request,
    booking_id: int,
    body: RatingRequest,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.submit_rating(
        booking_id, body.rater_role, body.target_id, body.rating, body.comment
    )
    return BookingResponse.from_domain(booking)
