"""
SQLAlchemy ORM models.

Tables
------
* ``users``      -- customers who book rides
* ``cab_types``  -- vehicle classes offered (matched by name)
* ``drivers``    -- drivers with a vehicle-type id and/or literal name
* ``bookings``   -- ride bookings and their lifecycle state

Indexes
-------
* **B-Tree** on ``bookings.status``, ``bookings.user_id``, ``bookings.driver_id``
  and ``drivers.status`` for the look-ups used by dispatch and the admin views.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .database import Base
from src.domain.enums import BookingStatus, DriverStatus, PaymentStatus, RefundStatus


def _values(enum_cls):
    return [member.value for member in enum_cls]


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CabTypeModel(Base):
    __tablename__ = "cab_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(60), nullable=False, unique=True)
    capacity = Column(Integer, default=4, nullable=False)
    description = Column(String(255), default="")


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), default="")
    phone = Column(String(32), default="")
    email = Column(String(255), default="")

    # Either or both may be present on legacy records
    vehicle_type_id = Column(Integer, ForeignKey("cab_types.id"), nullable=True)
    vehicle_type_name = Column(String(60), nullable=True)

    vehicle_number = Column(String(32), unique=True, nullable=False)
    vehicle_model = Column(String(120), default="")
    status = Column(
        Enum(DriverStatus, values_callable=_values, name="driverstatus"),
        default=DriverStatus.AVAILABLE,
        nullable=False,
    )
    current_booking_id = Column(Integer, nullable=True)  # bookings.id; no FK, avoids a cycle
    rating = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    total_rides = Column(Integer, default=0, nullable=False)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_drivers_status", "status"),)


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(16), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    pickup_location = Column(String(255), nullable=False)
    drop_location = Column(String(255), nullable=False)
    cab_type_id = Column(Integer, ForeignKey("cab_types.id"), nullable=False)
    pickup_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(
        Enum(BookingStatus, values_callable=_values, name="bookingstatus"),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    total_amount = Column(Float, default=0.0, nullable=False)

    payment_status = Column(
        Enum(PaymentStatus, values_callable=_values, name="paymentstatus"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_id = Column(String(64), nullable=True)
    refund_status = Column(
        Enum(RefundStatus, values_callable=_values, name="refundstatus"),
        default=RefundStatus.NONE,
        nullable=False,
    )
    refund_id = Column(String(64), nullable=True)
    refund_amount = Column(Float, nullable=True)

    # Ratings, flattened
    user_rating = Column(Integer, nullable=True)
    user_rating_comment = Column(Text, nullable=True)
    user_rated_at = Column(DateTime(timezone=True), nullable=True)
    driver_rating = Column(Integer, nullable=True)
    driver_rating_comment = Column(Text, nullable=True)
    driver_rated_at = Column(DateTime(timezone=True), nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_user", "user_id"),
        Index("idx_bookings_driver", "driver_id"),
    )
