"""
Ride waypoints: exactly one pickup, one drop, zero or more stopovers.
"""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Index, Integer, String, Uuid

from carpool.db.base import Base, utcnow


class RideLocation(Base):
    __tablename__ = "ride_locations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ride_id = Column(Uuid, ForeignKey("rides.id", ondelete="CASCADE"), nullable=False)
    location_type = Column(String(20), nullable=False)
    address = Column(String(500), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    sequence_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("latitude BETWEEN -90 AND 90", name="check_location_latitude"),
        CheckConstraint("longitude BETWEEN -180 AND 180", name="check_location_longitude"),
        CheckConstraint("sequence_order >= 0", name="check_location_sequence_order"),
        CheckConstraint(
            "location_type IN ('pickup', 'drop', 'stopover')",
            name="check_location_type",
        ),
        Index("ix_ride_locations_ride_order", "ride_id", "sequence_order"),
    )

    def __repr__(self) -> str:
        return f"<RideLocation(id={self.id}, ride={self.ride_id}, type={self.location_type})>"
