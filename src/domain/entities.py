"""
Domain entities.

Patterns used
-------------
- Plain dataclasses; lifecycle rules live in ``state_machine`` as pure
  functions so an entity is never mutated in place by a transition.
- ``VehicleTypeRef`` is a tagged variant: a driver record references its
  vehicle type either by cab-type id or by a free-text name.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from .enums import (
    AttemptOutcome,
    BookingStatus,
    DriverStatus,
    PaymentStatus,
    RefundStatus,
)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ById:
    cab_type_id: int


@dataclass(frozen=True)
class ByName:
    name: str


VehicleTypeRef = Union[ById, ByName]


@dataclass(frozen=True)
class Rating:
    score: int
    comment: str = ""
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not 1 <= self.score <= 5:
            raise ValueError("Rating must be between 1 and 5")


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class CabType:
    id: int
    name: str
    capacity: int = 4
    description: str = ""


@dataclass
class Driver:
    id: Optional[int] = None
    name: str = ""
    phone: str = ""
    email: str = ""
    # Priority order: an id reference first, then the literal recorded name
    vehicle_types: tuple[VehicleTypeRef, ...] = ()
    vehicle_number: str = ""
    vehicle_model: str = ""
    status: DriverStatus = DriverStatus.AVAILABLE
    current_booking_id: Optional[int] = None
    rating: float = 0.0
    rating_count: int = 0
    total_rides: int = 0
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None


@dataclass
class Booking:
    id: Optional[int] = None
    code: Optional[str] = None
    user_id: int = 0
    pickup_location: str = ""
    drop_location: str = ""
    cab_type_id: Optional[int] = None
    pickup_at: Optional[datetime] = None
    status: BookingStatus = BookingStatus.PENDING
    driver_id: Optional[int] = None
    total_amount: float = 0.0
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_id: Optional[str] = None
    refund_status: RefundStatus = RefundStatus.NONE
    refund_id: Optional[str] = None
    refund_amount: Optional[float] = None
    user_rating: Optional[Rating] = None
    driver_rating: Optional[Rating] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None


@dataclass(frozen=True)
class AssignmentAttempt:
    """One try at binding a driver; drives the retry loop, never persisted."""

    booking_id: int
    driver_id: Optional[int]
    outcome: AttemptOutcome
    at: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_booking_code(now: Optional[datetime] = None) -> str:
    """Human-shareable tracking code, e.g. ``CB2610197K3Q``."""
    now = now or utcnow()
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"CB{now:%y%m%d}{suffix}"
