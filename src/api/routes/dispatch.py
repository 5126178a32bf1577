"""
Dispatch endpoints
==================

PUT /api/v1/dispatch/assign -- bind a driver to a confirmed booking
PUT /api/v1/dispatch/remove -- release the bound driver

Both retry transient backend failures and are idempotent: repeating a
request that already took effect reports success without a second write.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_coordinator
from src.api.middleware import limiter
from src.api.schemas import (
    AssignRequest,
    BookingResponse,
    DispatchResponse,
    DriverResponse,
    ErrorResponse,
    RemoveRequest,
)
from src.config import settings
from src.services.dispatch import DispatchCoordinator, DispatchResult

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


def _to_response(result: DispatchResult) -> DispatchResponse:
    return DispatchResponse(
        success=result.success,
        booking=BookingResponse.from_domain(result.booking) if result.booking else None,
        driver=DriverResponse.model_validate(result.driver) if result.driver else None,
        confirmed=result.confirmed,
        attempts=len(result.attempts),
    )


@router.put(
    "/assign",
    response_model=DispatchResponse,
    summary="Assign a driver to a booking",
    responses={
        409: {"model": ErrorResponse, "description": "Booking or driver taken meanwhile."},
        503: {"model": ErrorResponse, "description": "Backend did not confirm."},
    },
)
@limiter.limit(settings.rate_limit)
async def assign_driver(
    request: Request,
    body: AssignRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    result = await coordinator.assign_driver(body.booking_id, body.driver_id)
    return _to_response(result)


@router.put(
    "/remove",
    response_model=DispatchResponse,
    summary="Remove the assigned driver",
    responses={503: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def remove_driver(
    request: Request,
    body: RemoveRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    result = await coordinator.remove_driver(body.booking_id)
    return _to_response(result)
