"""
Ride model: a posted trip offering seats for booking.

Key design decisions:
- No persisted booked-seat counter. Availability is always recomputed
  from active bookings, so cancellations can never drift a counter.
- `version` column is the optimistic-locking token for seat
  reservation: every booking insert/cancel bumps it, and a reservation
  only commits if the version it read is still current.
- Status is a plain string guarded by a CHECK constraint.
"""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
)

from carpool.db.base import Base, TimestampMixin
from carpool.domain.enums import RideStatus


class Ride(Base, TimestampMixin):
    __tablename__ = "rides"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_by = Column(Uuid, nullable=False, index=True)
    vehicle_information_id = Column(Uuid, nullable=True)

    total_seats = Column(Integer, nullable=False)
    price_per_seat = Column(Numeric(10, 2), nullable=False)
    distance = Column(Numeric(10, 2), nullable=True)  # km
    estimated_time = Column(Integer, nullable=True)  # minutes

    luggage_allowed = Column(Boolean, nullable=False, default=True)
    women_only = Column(Boolean, nullable=False, default=False)
    driver_verified = Column(Boolean, nullable=False, default=False)
    two_passenger_max_back = Column(Boolean, nullable=False, default=False)

    status = Column(String(20), nullable=False, default=RideStatus.DRAFT.value)
    departure_datetime = Column(DateTime(timezone=True), nullable=False)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("total_seats BETWEEN 1 AND 10", name="check_ride_total_seats_range"),
        CheckConstraint("price_per_seat > 0", name="check_ride_price_positive"),
        CheckConstraint(
            "status IN ('draft', 'published', 'in_progress', 'completed', 'cancelled')",
            name="check_ride_status",
        ),
        # Search: published rides ordered by departure
        Index("ix_rides_status_departure", "status", "departure_datetime"),
    )

    def __repr__(self) -> str:
        return f"<Ride(id={self.id}, status={self.status}, seats={self.total_seats})>"
