"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
# (admin overrides bypass this table, see state_machine.override)
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.ASSIGNED, BookingStatus.CANCELLED},
    BookingStatus.ASSIGNED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.CONFIRMED,
        BookingStatus.PENDING,
        BookingStatus.CANCELLED,
    },
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# A booking carries a driver exactly while in one of these
DRIVER_BOUND_STATUSES = frozenset(
    {BookingStatus.ASSIGNED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED}
)

# A driver is busy exactly while its booking is in one of these
DRIVER_ACTIVE_STATUSES = frozenset(
    {BookingStatus.ASSIGNED, BookingStatus.IN_PROGRESS}
)


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundStatus(str, enum.Enum):
    NONE = "none"
    INITIATED = "initiated"
    PROCESSED = "processed"
    FAILED = "failed"


class DriverStatus(str, enum.Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    OFFLINE = "offline"


class RaterRole(str, enum.Enum):
    USER = "user"
    DRIVER = "driver"


class AttemptOutcome(str, enum.Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    TRANSIENT_ERROR = "transient_error"
