"""
Booking model representing a rider's reservation on a ride.

Key design decisions:
- Partial unique index on (ride_id, user_id) over non-cancelled rows:
  one active booking per user per ride, while cancelled history stays
- Status field allows cancellation without deleting records
- total_amount is computed server-side at creation
"""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
    text,
)

from carpool.db.base import Base, TimestampMixin
from carpool.domain.enums import BookingStatus, PaymentStatus, PaymentType

_ACTIVE_ROW = text("status <> 'cancelled'")


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ride_id = Column(Uuid, ForeignKey("rides.id"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    booked_seats = Column(Integer, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_type = Column(String(20), nullable=False, default=PaymentType.WALLET.value)

    pickup_location_id = Column(Uuid, ForeignKey("ride_locations.id", ondelete="SET NULL"), nullable=True)
    drop_location_id = Column(Uuid, ForeignKey("ride_locations.id", ondelete="SET NULL"), nullable=True)
    stopover_id = Column(Uuid, ForeignKey("ride_locations.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        # One active booking per user per ride
        Index(
            "uq_bookings_active_ride_user",
            "ride_id",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE_ROW,
            sqlite_where=_ACTIVE_ROW,
        ),
        # Seat aggregate: SUM(booked_seats) WHERE ride_id = ? AND status <> 'cancelled'
        Index("ix_bookings_ride_status", "ride_id", "status"),
        CheckConstraint("booked_seats BETWEEN 1 AND 10", name="check_booking_seats_range"),
        CheckConstraint("total_amount > 0", name="check_booking_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'refunded')",
            name="check_booking_payment_status",
        ),
        CheckConstraint(
            "payment_type IN ('wallet', 'card', 'cash')",
            name="check_booking_payment_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, ride={self.ride_id}, user={self.user_id}, status={self.status})>"
