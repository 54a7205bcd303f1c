"""Initial schema: rides, ride_locations, bookings with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_BOOKING = sa.text("status <> 'cancelled'")


def upgrade() -> None:
    # Rides table
    op.create_table(
        "rides",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("vehicle_information_id", sa.Uuid(), nullable=True),
        sa.Column("total_seats", sa.Integer(), nullable=False),
        sa.Column("price_per_seat", sa.Numeric(10, 2), nullable=False),
        sa.Column("distance", sa.Numeric(10, 2), nullable=True),
        sa.Column("estimated_time", sa.Integer(), nullable=True),
        sa.Column("luggage_allowed", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("women_only", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("driver_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("two_passenger_max_back", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("departure_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total_seats BETWEEN 1 AND 10", name="check_ride_total_seats_range"),
        sa.CheckConstraint("price_per_seat > 0", name="check_ride_price_positive"),
        sa.CheckConstraint(
            "status IN ('draft', 'published', 'in_progress', 'completed', 'cancelled')",
            name="check_ride_status",
        ),
    )
    op.create_index("ix_rides_created_by", "rides", ["created_by"])
    op.create_index("ix_rides_status_departure", "rides", ["status", "departure_datetime"])

    # Ride waypoints
    op.create_table(
        "ride_locations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("ride_id", sa.Uuid(), sa.ForeignKey("rides.id", ondelete="CASCADE"), nullable=False),
        sa.Column("location_type", sa.String(20), nullable=False),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("sequence_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("latitude BETWEEN -90 AND 90", name="check_location_latitude"),
        sa.CheckConstraint("longitude BETWEEN -180 AND 180", name="check_location_longitude"),
        sa.CheckConstraint("sequence_order >= 0", name="check_location_sequence_order"),
        sa.CheckConstraint("location_type IN ('pickup', 'drop', 'stopover')", name="check_location_type"),
    )
    op.create_index("ix_ride_locations_ride_order", "ride_locations", ["ride_id", "sequence_order"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("ride_id", sa.Uuid(), sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("booked_seats", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_type", sa.String(20), nullable=False, server_default="wallet"),
        sa.Column(
            "pickup_location_id", sa.Uuid(), sa.ForeignKey("ride_locations.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column(
            "drop_location_id", sa.Uuid(), sa.ForeignKey("ride_locations.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("stopover_id", sa.Uuid(), sa.ForeignKey("ride_locations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("booked_seats BETWEEN 1 AND 10", name="check_booking_seats_range"),
        sa.CheckConstraint("total_amount > 0", name="check_booking_amount_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')", name="check_booking_status"
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'refunded')", name="check_booking_payment_status"
        ),
        sa.CheckConstraint("payment_type IN ('wallet', 'card', 'cash')", name="check_booking_payment_type"),
    )
    op.create_index("ix_bookings_ride_id", "bookings", ["ride_id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_ride_status", "bookings", ["ride_id", "status"])

    # One active booking per user per ride; cancelled rows are history
    op.create_index(
        "uq_bookings_active_ride_user",
        "bookings",
        ["ride_id", "user_id"],
        unique=True,
        postgresql_where=ACTIVE_BOOKING,
    )


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("ride_locations")
    op.drop_table("rides")
