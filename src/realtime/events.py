"""
Booking events and room naming.

Rooms
-----
* ``user:<id>``   -- everything about one customer's bookings
* ``driver:<id>`` -- everything about the driver's current / past rides
* ``admin``       -- every event, always

Wire names match what the web client already listens for.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from src.domain.entities import Booking

ADMIN_ROOM = "admin"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def driver_room(driver_id: int) -> str:
    return f"driver:{driver_id}"


class EventType(str, enum.Enum):
    BOOKING_UPDATED = "bookingUpdated"
    BOOKING_STATUS_CHANGED = "bookingStatusChanged"
    DRIVER_ASSIGNED = "driverAssigned"
    RIDE_STARTED = "rideStarted"
    RIDE_COMPLETED = "rideCompleted"
    RIDE_CANCELLED = "rideCancelled"
    PAYMENT_RECEIVED = "paymentReceived"
    REFUND_INITIATED = "refundInitiated"
    REFUND_PROCESSED = "refundProcessed"
    REFUND_FAILED = "refundFailed"
    RATING_SUBMITTED = "ratingSubmitted"
    DRIVER_LOCATION_UPDATED = "driverLocationUpdated"


# Money matters between the customer and the operator only
_DRIVER_NOT_NOTIFIED = frozenset(
    {
        EventType.PAYMENT_RECEIVED,
        EventType.REFUND_INITIATED,
        EventType.REFUND_PROCESSED,
        EventType.REFUND_FAILED,
    }
)


@dataclass(frozen=True)
class DomainEvent:
    type: EventType
    booking_id: int
    user_id: Optional[int] = None
    driver_id: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict)
    notify_user: bool = True
    notify_driver: bool = True
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def rooms(self) -> list[str]:
        rooms = []
        if self.notify_user and self.user_id is not None:
            rooms.append(user_room(self.user_id))
        if self.notify_driver and self.driver_id is not None:
            rooms.append(driver_room(self.driver_id))
        rooms.append(ADMIN_ROOM)
        return rooms

    def to_message(self) -> dict[str, Any]:
        """Shape pushed to clients: ``{"event": ..., "data": ...}``."""
        return {
            "event": self.type.value,
            "data": {
                "event_id": self.event_id,
                "timestamp": self.timestamp,
                "booking_id": self.booking_id,
                "user_id": self.user_id,
                "driver_id": self.driver_id,
                **self.payload,
            },
        }

    def to_json(self) -> str:
        return json.dumps(
            {
                "event_id": self.event_id,
                "type": self.type.value,
                "timestamp": self.timestamp,
                "booking_id": self.booking_id,
                "user_id": self.user_id,
                "driver_id": self.driver_id,
                "payload": self.payload,
                "notify_user": self.notify_user,
                "notify_driver": self.notify_driver,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, data: str) -> DomainEvent:
        parsed = json.loads(data)
        return cls(
            type=EventType(parsed["type"]),
            booking_id=parsed["booking_id"],
            user_id=parsed.get("user_id"),
            driver_id=parsed.get("driver_id"),
            payload=parsed.get("payload", {}),
            notify_user=parsed.get("notify_user", True),
            notify_driver=parsed.get("notify_driver", True),
            event_id=parsed.get("event_id", str(uuid4())),
            timestamp=parsed.get("timestamp", ""),
        )


def booking_summary(booking: Booking) -> dict[str, Any]:
    return {
        "code": booking.code,
        "status": booking.status.value,
        "payment_status": booking.payment_status.value,
        "refund_status": booking.refund_status.value,
        "total_amount": booking.total_amount,
    }


def booking_event(
    event_type: EventType,
    booking: Booking,
    driver_id: Optional[int] = None,
    **payload: Any,
) -> DomainEvent:
    """
    Build the one event for a booking mutation.

    *driver_id* defaults to the booking's bound driver; pass the released
    driver explicitly when the mutation just dropped it.
    """
    return DomainEvent(
        type=event_type,
        booking_id=booking.id,
        user_id=booking.user_id,
        driver_id=driver_id if driver_id is not None else booking.driver_id,
        payload={"booking": booking_summary(booking), **payload},
        notify_driver=event_type not in _DRIVER_NOT_NOTIFIED,
    )
