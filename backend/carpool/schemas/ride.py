"""
Pydantic schemas for ride and waypoint request/response validation.
"""

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from carpool.domain.enums import RideStatus
from carpool.schemas.common import CamelModel, Pagination, UtcDatetime


class WaypointIn(CamelModel):
    address: str = Field(..., min_length=1, max_length=500)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    sequence_order: Optional[int] = Field(None, ge=0)

    @field_validator("address")
    @classmethod
    def address_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Address is required")
        return value


class RideCreate(CamelModel):
    vehicle_information_id: Optional[uuid.UUID] = None
    total_seats: int = Field(..., ge=1, le=10)
    price_per_seat: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    luggage_allowed: bool = True
    women_only: bool = False
    driver_verified: bool = False
    two_passenger_max_back: bool = False
    departure_datetime: UtcDatetime = Field(..., alias="departureDateTime")
    pickup_location: WaypointIn
    drop_location: WaypointIn
    stop_overs: list[WaypointIn] = Field(default_factory=list, max_length=10)


class RideUpdate(CamelModel):
    vehicle_information_id: Optional[uuid.UUID] = None
    total_seats: Optional[int] = Field(None, ge=1, le=10)
    price_per_seat: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    luggage_allowed: Optional[bool] = None
    women_only: Optional[bool] = None
    driver_verified: Optional[bool] = None
    two_passenger_max_back: Optional[bool] = None
    departure_datetime: Optional[UtcDatetime] = Field(None, alias="departureDateTime")
    pickup_location: Optional[WaypointIn] = None
    drop_location: Optional[WaypointIn] = None
    stop_overs: Optional[list[WaypointIn]] = Field(None, max_length=10)

    def ride_fields(self) -> dict:
        """Explicitly set scalar ride columns (waypoints excluded)."""
        return self.model_dump(
            exclude_unset=True,
            exclude_none=True,
            exclude={"pickup_location", "drop_location", "stop_overs"},
        )

    def touches_route(self) -> bool:
        return bool({"pickup_location", "drop_location", "stop_overs"} & self.model_fields_set)


class RideStatusUpdate(CamelModel):
    status: RideStatus


class RideLocationResponse(BaseModel):
    id: uuid.UUID
    location_type: str
    address: str
    latitude: float
    longitude: float
    sequence_order: int

    model_config = ConfigDict(from_attributes=True)


class RideResponse(BaseModel):
    id: uuid.UUID
    created_by: uuid.UUID
    vehicle_information_id: Optional[uuid.UUID]
    total_seats: int
    price_per_seat: Decimal
    distance: Optional[Decimal]
    estimated_time: Optional[int]
    luggage_allowed: bool
    women_only: bool
    driver_verified: bool
    two_passenger_max_back: bool
    status: str
    departure_datetime: UtcDatetime
    created_at: UtcDatetime
    updated_at: UtcDatetime
    locations: list[RideLocationResponse] = []
    available_seats: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class RideList(BaseModel):
    rides: list[RideResponse]
    pagination: Pagination


class RideSeats(BaseModel):
    ride_id: uuid.UUID
    total_seats: int
    booked_seats: int
    available_seats: int
