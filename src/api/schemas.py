"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.enums import (
    BookingStatus,
    DriverStatus,
    PaymentStatus,
    RaterRole,
    RefundStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class PaymentRequest(BaseModel):
    payment_id: str = Field(..., min_length=1, max_length=128)
    succeeded: bool = True


class ConfirmRequest(BaseModel):
    admin_override: bool = False


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    is_refund_eligible: bool = Field(
        False,
        description="Request a refund; honoured only if the booking is eligible.",
    )


class RatingRequest(BaseModel):
    rater_role: RaterRole
    target_id: int
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class AssignRequest(BaseModel):
    booking_id: int
    driver_id: int


class RemoveRequest(BaseModel):
    booking_id: int


class TripRequest(BaseModel):
    booking_id: int


class LocationRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class StatusOverrideRequest(BaseModel):
    status: BookingStatus


# ── Responses ─────────────────────────────────────────────────────────


class RatingResponse(BaseModel):
    score: int
    comment: str = ""
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    code: Optional[str] = None
    user_id: int
    pickup_location: str
    drop_location: str
    cab_type_id: Optional[int] = None
    pickup_at: Optional[datetime] = None
    status: BookingStatus
    driver_id: Optional[int] = None
    total_amount: float
    payment_status: PaymentStatus
    refund_status: RefundStatus
    refund_amount: Optional[float] = None
    user_rating: Optional[RatingResponse] = None
    driver_rating: Optional[RatingResponse] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    pending_sync: bool = False

    model_config = {"from_attributes": True}

    @classmethod
    def from_domain(cls, booking, pending_sync: bool = False) -> BookingResponse:
        return cls.model_validate(booking).model_copy(update={"pending_sync": pending_sync})


class DriverResponse(BaseModel):
    id: int
    name: str
    phone: str = ""
    vehicle_number: str
    vehicle_model: str = ""
    status: DriverStatus
    current_booking_id: Optional[int] = None
    rating: float = 0.0
    total_rides: int = 0
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None

    model_config = {"from_attributes": True}


class DispatchResponse(BaseModel):
    success: bool
    booking: Optional[BookingResponse] = None
    driver: Optional[DriverResponse] = None
    confirmed: bool = True
    attempts: int = 0
    error: Optional[str] = None


class RefundEligibilityResponse(BaseModel):
    eligible: bool
    full_refund: bool
    cancellation_allowed: bool
    reason: str


class RatingEligibilityResponse(BaseModel):
    needed: bool
    reason: str


class EligibilityResponse(BaseModel):
    booking_id: int
    refund: RefundEligibilityResponse
    user_rating: RatingEligibilityResponse
    driver_rating: RatingEligibilityResponse


class HealthResponse(BaseModel):
    status: str = "ok"
    realtime: Optional[dict] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: str
