"""
Booking orchestration: cross-entity checks and response shaping.

The service checks the ride, the rider and the referenced waypoints up
front so callers get precise errors early. None of these checks is
relied on for correctness: ``BookingStore.create`` re-validates ride
state, ownership, duplicates and capacity inside the transaction that
reserves the seats.
"""

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from carpool.core.errors import AppError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from carpool.core.logging import get_logger
from carpool.core.metrics import record_booking_attempt
from carpool.domain.enums import BookingStatus, PaymentStatus, RideStatus
from carpool.schemas.booking import (
    BookingCreate,
    BookingCreated,
    BookingEnvelope,
    BookingList,
    BookingResponse,
    BookingStatistics,
    RideSeatSummary,
    SeatAvailabilityResponse,
)
from carpool.schemas.common import Pagination
from carpool.stores.booking_store import BookingStore, seats_message
from carpool.stores.ride_location_store import RideLocationStore
from carpool.stores.ride_store import RideStore

logger = get_logger(__name__)


async def _validate_locations(locations: RideLocationStore, payload: BookingCreate) -> None:
    references = (
        ("pickup_location_id", payload.pickup_location_id, "Invalid pickup location"),
        ("drop_location_id", payload.drop_location_id, "Invalid drop location"),
        ("stopover_id", payload.stopover_id, "Invalid stopover location"),
    )
    for field, location_id, message in references:
        if location_id is not None and not await locations.belongs_to_ride(location_id, payload.ride_id):
            raise ValidationError(message, errors=[{"field": field, "message": message}])


async def create_booking(db: AsyncSession, user_id: uuid.UUID, payload: BookingCreate) -> BookingCreated:
    rides = RideStore(db)
    bookings = BookingStore(db)

    try:
        ride = await rides.find_by_id(payload.ride_id)
        if ride is None:
            raise NotFoundError("Ride not found")
        if ride.status != RideStatus.PUBLISHED.value:
            raise ConflictError("Ride is not available for booking")
        if ride.created_by == user_id:
            raise ConflictError("Cannot book your own ride")

        if await bookings.has_existing_booking(payload.ride_id, user_id):
            raise ConflictError("You already have a booking for this ride")

        availability = await bookings.get_available_seats(payload.ride_id)
        if payload.booked_seats > availability.available_seats:
            raise ConflictError(seats_message(availability.available_seats))

        await _validate_locations(RideLocationStore(db), payload)

        result = await bookings.create(
            ride_id=payload.ride_id,
            user_id=user_id,
            booked_seats=payload.booked_seats,
            payment_type=payload.payment_type,
            pickup_location_id=payload.pickup_location_id,
            drop_location_id=payload.drop_location_id,
            stopover_id=payload.stopover_id,
        )
    except ConflictError:
        record_booking_attempt("conflict")
        raise
    except AppError:
        record_booking_attempt("rejected")
        raise
    except Exception:
        record_booking_attempt("error")
        raise

    record_booking_attempt("success")
    return BookingCreated(
        booking=BookingResponse.model_validate(result.booking),
        ride=RideSeatSummary(
            id=result.ride_id,
            departure_datetime=result.departure_datetime,
            price_per_seat=result.price_per_seat,
            total_seats=result.total_seats,
            available_seats=result.available_seats,
        ),
    )


async def get_booking(db: AsyncSession, booking_id: uuid.UUID, user_id: uuid.UUID) -> BookingEnvelope:
    """Visible to the rider and to the ride owner."""
    booking = await BookingStore(db).get(booking_id)
    if booking.user_id != user_id:
        ride = await RideStore(db).find_by_id(booking.ride_id)
        if ride is None or ride.created_by != user_id:
            raise AuthorizationError("Not authorized to view this booking")
    return BookingEnvelope(booking=BookingResponse.model_validate(booking))


async def list_my_bookings(
    db: AsyncSession,
    user_id: uuid.UUID,
    page: int,
    limit: int,
    status: Optional[BookingStatus] = None,
) -> BookingList:
    items, total = await BookingStore(db).find_by_user_id(user_id, page=page, limit=limit, status=status)
    return BookingList(
        bookings=[BookingResponse.model_validate(b) for b in items],
        pagination=Pagination.build(page, limit, total),
    )


async def list_ride_bookings(
    db: AsyncSession, ride_id: uuid.UUID, user_id: uuid.UUID, page: int, limit: int
) -> BookingList:
    ride = await RideStore(db).get(ride_id)
    if ride.created_by != user_id:
        raise AuthorizationError("Not authorized to view bookings for this ride")

    items, total = await BookingStore(db).find_by_ride_id(ride_id, page=page, limit=limit)
    return BookingList(
        bookings=[BookingResponse.model_validate(b) for b in items],
        pagination=Pagination.build(page, limit, total),
    )


async def cancel_booking(db: AsyncSession, booking_id: uuid.UUID, user_id: uuid.UUID) -> BookingEnvelope:
    booking = await BookingStore(db).cancel(booking_id, user_id)
    return BookingEnvelope(booking=BookingResponse.model_validate(booking))


async def confirm_booking(db: AsyncSession, booking_id: uuid.UUID, user_id: uuid.UUID) -> BookingEnvelope:
    booking = await BookingStore(db).confirm(booking_id, user_id)
    return BookingEnvelope(booking=BookingResponse.model_validate(booking))


async def complete_booking(db: AsyncSession, booking_id: uuid.UUID, user_id: uuid.UUID) -> BookingEnvelope:
    booking = await BookingStore(db).complete(booking_id, user_id)
    return BookingEnvelope(booking=BookingResponse.model_validate(booking))


async def update_payment_status(
    db: AsyncSession, booking_id: uuid.UUID, payment_status: PaymentStatus, user_id: uuid.UUID
) -> BookingEnvelope:
    booking = await BookingStore(db).update_payment_status(booking_id, payment_status, user_id)
    return BookingEnvelope(booking=BookingResponse.model_validate(booking))


async def get_statistics(db: AsyncSession, user_id: uuid.UUID, as_owner: bool = False) -> BookingStatistics:
    stats = await BookingStore(db).get_statistics(user_id, as_owner=as_owner)
    return BookingStatistics(**stats)


async def check_seat_availability(db: AsyncSession, ride_id: uuid.UUID) -> SeatAvailabilityResponse:
    ride = await RideStore(db).get(ride_id)
    if ride.status != RideStatus.PUBLISHED.value:
        raise ConflictError("Ride is not available for booking")

    availability = await BookingStore(db).get_available_seats(ride_id)
    return SeatAvailabilityResponse(
        ride_id=ride.id,
        total_seats=availability.total_seats,
        booked_seats=availability.booked_seats,
        available_seats=availability.available_seats,
        price_per_seat=ride.price_per_seat,
    )
