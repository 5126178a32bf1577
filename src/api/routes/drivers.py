"""
Driver endpoints
================

PUT /api/v1/drivers/{driver_id}/start-trip    -- assigned -> inProgress
PUT /api/v1/drivers/{driver_id}/complete-trip -- inProgress -> completed
PUT /api/v1/drivers/{driver_id}/location      -- position update
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_service
from src.api.middleware import limiter
from src.api.schemas import (
    BookingResponse,
    DriverResponse,
    ErrorResponse,
    LocationRequest,
    TripRequest,
)
from src.config import settings
from src.services.bookings import BookingService

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.put(
    "/{driver_id}/start-trip",
    response_model=BookingResponse,
    summary="Start the assigned trip",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    driver_id: int,
    body: TripRequest,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.start_trip(body.booking_id, driver_id)
    return BookingResponse.from_domain(booking)


@router.put(
    "/{driver_id}/complete-trip",
    response_model=BookingResponse,
    summary="Complete the trip in progress",
    description="Releases the driver and counts the ride.",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def complete_trip(
    request: Request,
    driver_id: int,
    body: TripRequest,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.complete_trip(body.booking_id, driver_id)
    return BookingResponse.from_domain(booking)


@router.put(
    "/{driver_id}/location",
    response_model=DriverResponse,
    summary="Update driver position",
)
@limiter.limit(settings.rate_limit)
async def update_location(
    request: Request,
    driver_id: int,
    body: LocationRequest,
    service: BookingService = Depends(get_booking_service),
):
    driver = await service.update_driver_location(driver_id, body.lat, body.lng)
    return DriverResponse.model_validate(driver)
