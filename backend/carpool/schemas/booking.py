"""
Pydantic schemas for booking-related request/response validation.
"""

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from carpool.domain.enums import PaymentStatus, PaymentType
from carpool.schemas.common import CamelModel, Pagination, UtcDatetime


class BookingCreate(CamelModel):
    # Unknown fields (e.g. a client-sent totalAmount) are dropped
    model_config = ConfigDict(extra="ignore")

    ride_id: uuid.UUID
    booked_seats: int = Field(..., ge=1, le=10)
    pickup_location_id: Optional[uuid.UUID] = None
    drop_location_id: Optional[uuid.UUID] = None
    stopover_id: Optional[uuid.UUID] = None
    payment_type: PaymentType = PaymentType.WALLET


class PaymentStatusUpdate(CamelModel):
    payment_status: PaymentStatus


class BookingResponse(BaseModel):
    id: uuid.UUID
    ride_id: uuid.UUID
    user_id: uuid.UUID
    booked_seats: int
    total_amount: Decimal
    status: str
    payment_status: str
    payment_type: str
    pickup_location_id: Optional[uuid.UUID]
    drop_location_id: Optional[uuid.UUID]
    stopover_id: Optional[uuid.UUID]
    created_at: UtcDatetime
    updated_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)


class RideSeatSummary(BaseModel):
    id: uuid.UUID
    departure_datetime: UtcDatetime
    price_per_seat: Decimal
    total_seats: int
    available_seats: int


class BookingCreated(BaseModel):
    booking: BookingResponse
    ride: RideSeatSummary


class BookingEnvelope(BaseModel):
    booking: BookingResponse


class BookingList(BaseModel):
    bookings: list[BookingResponse]
    pagination: Pagination


class SeatAvailabilityResponse(CamelModel):
    ride_id: uuid.UUID
    total_seats: int
    booked_seats: int
    available_seats: int
    price_per_seat: Decimal


class BookingStatistics(BaseModel):
    total_bookings: int
    pending_bookings: int
    confirmed_bookings: int
    cancelled_bookings: int
    completed_bookings: int
    total_revenue: Decimal
    average_amount: Decimal
