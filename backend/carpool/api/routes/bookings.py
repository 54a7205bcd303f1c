"""
Booking endpoints with concurrency-safe seat reservation.

Static paths (my-bookings, statistics, ride/..., availability/...) are
declared before /{booking_id} so they are never captured as an id.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.api.deps import PageParams, get_page_params
from carpool.core.security import get_current_user_id
from carpool.db.session import get_db
from carpool.domain.enums import BookingStatus
from carpool.schemas.booking import (
    BookingCreate,
    BookingCreated,
    BookingEnvelope,
    BookingList,
    BookingStatistics,
    PaymentStatusUpdate,
    SeatAvailabilityResponse,
)
from carpool.schemas.common import ApiResponse
from carpool.services import booking_service

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=ApiResponse[BookingCreated], status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Book seats on a published ride.

    Uses optimistic locking on the ride version to prevent overbooking
    under concurrent load. A reservation that loses the race is retried
    against fresh seat counts; exhausted retries return 409.
    """
    created = await booking_service.create_booking(db, user_id, booking_data)
    return ApiResponse(message="Booking created successfully", data=created)


@router.get("/my-bookings", response_model=ApiResponse[BookingList])
async def list_my_bookings(
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    paging: PageParams = Depends(get_page_params),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    bookings = await booking_service.list_my_bookings(
        db, user_id, paging.page, paging.limit, status=booking_status
    )
    return ApiResponse(message="Bookings retrieved successfully", data=bookings)


@router.get("/statistics", response_model=ApiResponse[BookingStatistics])
async def booking_statistics(
    as_owner: bool = Query(False, alias="asOwner"),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Booking counts and revenue, as rider (default) or across the caller's rides."""
    stats = await booking_service.get_statistics(db, user_id, as_owner=as_owner)
    return ApiResponse(message="Booking statistics retrieved successfully", data=stats)


@router.get("/ride/{ride_id}", response_model=ApiResponse[BookingList])
async def list_ride_bookings(
    ride_id: uuid.UUID,
    paging: PageParams = Depends(get_page_params),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Bookings on one ride. Ride owner only."""
    bookings = await booking_service.list_ride_bookings(db, ride_id, user_id, paging.page, paging.limit)
    return ApiResponse(message="Ride bookings retrieved successfully", data=bookings)


@router.get("/availability/{ride_id}", response_model=ApiResponse[SeatAvailabilityResponse])
async def check_seat_availability(
    ride_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    availability = await booking_service.check_seat_availability(db, ride_id)
    return ApiResponse(message="Seat availability retrieved successfully", data=availability)


@router.get("/{booking_id}", response_model=ApiResponse[BookingEnvelope])
async def get_booking(
    booking_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.get_booking(db, booking_id, user_id)
    return ApiResponse(message="Booking retrieved successfully", data=booking)


@router.put("/{booking_id}/cancel", response_model=ApiResponse[BookingEnvelope])
async def cancel_booking(
    booking_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking (rider or ride owner). Seats are freed immediately."""
    booking = await booking_service.cancel_booking(db, booking_id, user_id)
    return ApiResponse(message="Booking cancelled successfully", data=booking)


@router.put("/{booking_id}/confirm", response_model=ApiResponse[BookingEnvelope])
async def confirm_booking(
    booking_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.confirm_booking(db, booking_id, user_id)
    return ApiResponse(message="Booking confirmed successfully", data=booking)


@router.put("/{booking_id}/complete", response_model=ApiResponse[BookingEnvelope])
async def complete_booking(
    booking_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.complete_booking(db, booking_id, user_id)
    return ApiResponse(message="Booking completed successfully", data=booking)


@router.put("/{booking_id}/payment-status", response_model=ApiResponse[BookingEnvelope])
async def update_payment_status(
    booking_id: uuid.UUID,
    body: PaymentStatusUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    booking = await booking_service.update_payment_status(db, booking_id, body.payment_status, user_id)
    return ApiResponse(message="Payment status updated successfully", data=booking)
