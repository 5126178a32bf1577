"""Initial schema: users, cab types, drivers and bookings.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── cab_types ─────────────────────────────────────────────────────
    op.create_table(
        "cab_types",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(60), unique=True, nullable=False),
        sa.Column("capacity", sa.Integer, default=4, nullable=False),
        sa.Column("description", sa.String(255), default=""),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), default=""),
        sa.Column("phone", sa.String(32), default=""),
        sa.Column("email", sa.String(255), default=""),
        sa.Column(
            "vehicle_type_id",
            sa.Integer,
            sa.ForeignKey("cab_types.id"),
            nullable=True,
        ),
        sa.Column("vehicle_type_name", sa.String(60), nullable=True),
        sa.Column("vehicle_number", sa.String(32), unique=True, nullable=False),
        sa.Column("vehicle_model", sa.String(120), default=""),
        sa.Column(
            "status",
            sa.Enum("available", "assigned", "offline", name="driverstatus"),
            default="available",
            nullable=False,
        ),
        sa.Column("current_booking_id", sa.Integer, nullable=True),
        sa.Column("rating", sa.Float, default=0.0, nullable=False),
        sa.Column("rating_count", sa.Integer, default=0, nullable=False),
        sa.Column("total_rides", sa.Integer, default=0, nullable=False),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_drivers_status", "drivers", ["status"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(16), unique=True, nullable=False),
        sa.Column(
            "user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("pickup_location", sa.String(255), nullable=False),
        sa.Column("drop_location", sa.String(255), nullable=False),
        sa.Column(
            "cab_type_id",
            sa.Integer,
            sa.ForeignKey("cab_types.id"),
            nullable=False,
        ),
        sa.Column("pickup_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "confirmed",
                "assigned",
                "inProgress",
                "completed",
                "cancelled",
                name="bookingstatus",
            ),
            default="pending",
            nullable=False,
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True
        ),
        sa.Column("total_amount", sa.Float, default=0.0, nullable=False),
        sa.Column(
            "payment_status",
            sa.Enum("pending", "completed", "failed", name="paymentstatus"),
            default="pending",
            nullable=False,
        ),
        sa.Column("payment_id", sa.String(64), nullable=True),
        sa.Column(
            "refund_status",
            sa.Enum("none", "initiated", "processed", "failed", name="refundstatus"),
            default="none",
            nullable=False,
        ),
        sa.Column("refund_id", sa.String(64), nullable=True),
        sa.Column("refund_amount", sa.Float, nullable=True),
        sa.Column("user_rating", sa.Integer, nullable=True),
        sa.Column("user_rating_comment", sa.Text, nullable=True),
        sa.Column("user_rated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("driver_rating", sa.Integer, nullable=True),
        sa.Column("driver_rating_comment", sa.Text, nullable=True),
        sa.Column("driver_rated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_user", "bookings", ["user_id"])
    op.create_index("idx_bookings_driver", "bookings", ["driver_id"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("drivers")
    op.drop_table("cab_types")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS refundstatus")
    op.execute("DROP TYPE IF EXISTS paymentstatus")
    op.execute("DROP TYPE IF EXISTS bookingstatus")
    op.execute("DROP TYPE IF EXISTS driverstatus")
