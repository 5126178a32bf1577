"""
Admin / observability endpoints
===============================

GET   /api/v1/admin/bookings                      -- list bookings, optionally by status
GET   /api/v1/admin/bookings/awaiting-driver      -- confirmed bookings with no driver
PATCH /api/v1/admin/bookings/{booking_id}/status  -- status override (escape hatch)
GET   /api/v1/admin/health                        -- health check + realtime stats
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_service, get_services, get_store
from src.api.middleware import limiter
from src.api.schemas import (
    BookingResponse,
    ErrorResponse,
    HealthResponse,
    StatusOverrideRequest,
)
from src.config import settings
from src.domain.enums import BookingStatus
from src.infrastructure.repositories import BookingStore
from src.services.bookings import BookingService
from src.services.container import Services

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/bookings",
    response_model=list[BookingResponse],
    summary="List bookings",
)
@limiter.limit(settings.rate_limit)
async def list_bookings(
    request: Request,
    status: Optional[BookingStatus] = None,
    store: BookingStore = Depends(get_store),
):
    bookings = await store.list_bookings(status=status)
    return [BookingResponse.from_domain(b) for b in bookings]


@router.get(
    "/bookings/awaiting-driver",
    response_model=list[BookingResponse],
    summary="Confirmed bookings still waiting for a driver",
)
@limiter.limit(settings.rate_limit)
async def awaiting_driver(
    request: Request,
    store: BookingStore = Depends(get_store),
):
    bookings = await store.list_bookings(
        status=BookingStatus.CONFIRMED, unassigned_only=True
    )
    return [BookingResponse.from_domain(b) for b in bookings]


@router.patch(
    "/bookings/{booking_id}/status",
    response_model=BookingResponse,
    summary="Override a booking's status",
    description=(
        "Any status to any status.  Entering assigned / inProgress / completed "
        "needs a driver already on the booking; leaving them releases it."
    ),
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def override_status(
    request: Request,
    booking_id: int,
    body: StatusOverrideRequest,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.override_status(booking_id, body.status)
    return BookingResponse.from_domain(booking)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(services: Services = Depends(get_services)):
    return HealthResponse(realtime=services.bus.get_stats())
