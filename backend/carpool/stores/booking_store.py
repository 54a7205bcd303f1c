"""
Booking store: seat accounting and the booking state machine.

CONCURRENCY STRATEGY: Optimistic Locking on the Ride Version
=============================================================

Problem:
  Two riders request the last seats of a ride at the same time.
  Both sum the active bookings, both see enough room, both insert.
  Result: overbooking.

Solution:
  Seats are never stored as a counter; they are always recomputed as
  SUM(booked_seats) over non-cancelled bookings. The ride row carries a
  `version` column that every seat-affecting write bumps.

  1. Read the ride's current version
  2. Sum active booked seats and re-check capacity
  3. UPDATE rides SET version = version + 1
     WHERE id = :ride_id AND version = :read_version
  4. rows_affected == 0 -> another reservation (or a cancel / ride
     change) won the race: roll back, re-read, retry
  5. Otherwise insert the pending booking in the same transaction

  The version is read BEFORE the sum, so a sum can never be older than
  the version it is validated against. Concurrent reservations for the
  same ride serialize on the version row; different rides never contend.

  The partial unique index (ride_id, user_id) WHERE status <> 'cancelled'
  closes the duplicate-booking race for a single rider.

Status changes (confirm / cancel / complete) are compare-and-swap on the
current status, so two concurrent transitions cannot both apply.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.core.config import get_settings
from carpool.core.errors import AuthorizationError, ConflictError, NotFoundError
from carpool.core.logging import get_logger
from carpool.core.metrics import booking_latency, record_booking_transition, reservation_retries
from carpool.db.base import as_utc, utcnow
from carpool.domain.enums import (
    BOOKING_ACTION_POLICY,
    BOOKING_ACTION_TARGET,
    BookingAction,
    BookingActor,
    BookingStatus,
    PaymentStatus,
    PaymentType,
    RideStatus,
    can_transition,
)
from carpool.models.booking import Booking
from carpool.models.ride import Ride

logger = get_logger(__name__)

CENTS = Decimal("0.01")

# Reasons a transition is refused, keyed by (action, current status)
_STATE_ERRORS = {
    (BookingAction.CANCEL, BookingStatus.CANCELLED): "Booking is already cancelled",
    (BookingAction.CANCEL, BookingStatus.COMPLETED): "Cannot cancel completed booking",
    (BookingAction.CONFIRM, BookingStatus.CONFIRMED): "Booking is not in pending status",
    (BookingAction.CONFIRM, BookingStatus.CANCELLED): "Booking is not in pending status",
    (BookingAction.CONFIRM, BookingStatus.COMPLETED): "Booking is not in pending status",
    (BookingAction.COMPLETE, BookingStatus.PENDING): "Booking must be confirmed before completion",
    (BookingAction.COMPLETE, BookingStatus.CANCELLED): "Booking must be confirmed before completion",
    (BookingAction.COMPLETE, BookingStatus.COMPLETED): "Booking is already completed",
}


@dataclass(frozen=True)
class SeatAvailability:
    total_seats: int
    booked_seats: int
    available_seats: int


@dataclass
class BookingResult:
    """Outcome of a successful reservation, with the ride as that attempt saw it."""

    booking: Booking
    ride_id: uuid.UUID
    departure_datetime: datetime
    price_per_seat: Decimal
    total_seats: int
    available_seats: int
    attempts: int


def seats_message(available: int) -> str:
    if available <= 0:
        return "No seats available"
    return f"Only {available} seat{'s' if available != 1 else ''} available"


class BookingStore:
    def __init__(self, session: AsyncSession, max_retries: Optional[int] = None):
        self.session = session
        self.max_retries = max_retries or get_settings().BOOKING_MAX_RETRIES

    # Reads

    async def find_by_id(self, booking_id: uuid.UUID) -> Optional[Booking]:
        result = await self.session.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, booking_id: uuid.UUID) -> Booking:
        booking = await self.find_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    async def find_by_user_id(
        self,
        user_id: uuid.UUID,
        page: int = 1,
        limit: int = 20,
        status: Optional[BookingStatus] = None,
    ) -> tuple[list[Booking], int]:
        conditions = [Booking.user_id == user_id]
        if status is not None:
            conditions.append(Booking.status == status.value)
        return await self._paginate(conditions, page, limit)

    async def find_by_ride_id(
        self, ride_id: uuid.UUID, page: int = 1, limit: int = 20
    ) -> tuple[list[Booking], int]:
        return await self._paginate([Booking.ride_id == ride_id], page, limit)

    async def _paginate(self, conditions: list, page: int, limit: int) -> tuple[list[Booking], int]:
        total = (
            await self.session.execute(select(func.count()).select_from(Booking).where(*conditions))
        ).scalar_one()
        result = await self.session.execute(
            select(Booking)
            .where(*conditions)
            .order_by(Booking.created_at.desc(), Booking.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def has_existing_booking(self, ride_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.ride_id == ride_id,
                Booking.user_id == user_id,
                Booking.status != BookingStatus.CANCELLED.value,
            )
        )
        return result.scalar_one() > 0

    async def count_active_seats(self, ride_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(Booking.booked_seats), 0)).where(
                Booking.ride_id == ride_id,
                Booking.status != BookingStatus.CANCELLED.value,
            )
        )
        return int(result.scalar_one())

    async def has_confirmed_bookings(self, ride_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(Booking)
            .where(Booking.ride_id == ride_id, Booking.status == BookingStatus.CONFIRMED.value)
        )
        return result.scalar_one() > 0

    async def get_available_seats(self, ride_id: uuid.UUID) -> SeatAvailability:
        total_seats = (
            await self.session.execute(select(Ride.total_seats).where(Ride.id == ride_id))
        ).scalar_one_or_none()
        if total_seats is None:
            raise NotFoundError("Ride not found")

        booked = await self.count_active_seats(ride_id)
        return SeatAvailability(
            total_seats=total_seats,
            booked_seats=booked,
            available_seats=max(total_seats - booked, 0),
        )

    @staticmethod
    def calculate_total_amount(
        price_per_seat: Decimal, booked_seats: int, taxes: Iterable[Decimal] = ()
    ) -> Decimal:
        subtotal = Decimal(str(price_per_seat)) * booked_seats
        tax_total = sum((Decimal(str(tax)) for tax in taxes), Decimal("0"))
        return (subtotal + tax_total).quantize(CENTS, rounding=ROUND_HALF_UP)

    # Reservation

    async def create(
        self,
        *,
        ride_id: uuid.UUID,
        user_id: uuid.UUID,
        booked_seats: int,
        payment_type: PaymentType = PaymentType.WALLET,
        pickup_location_id: Optional[uuid.UUID] = None,
        drop_location_id: Optional[uuid.UUID] = None,
        stopover_id: Optional[uuid.UUID] = None,
    ) -> BookingResult:
        """
        Reserve seats and insert a pending booking.

        Every precondition is re-checked inside the attempt that commits,
        regardless of what the caller already verified.
        """
        started = time.perf_counter()

        for attempt in range(1, self.max_retries + 1):
            # Step 1: version first, then everything it guards
            ride = (
                await self.session.execute(
                    select(
                        Ride.version,
                        Ride.status,
                        Ride.created_by,
                        Ride.total_seats,
                        Ride.price_per_seat,
                        Ride.departure_datetime,
                    ).where(Ride.id == ride_id)
                )
            ).one_or_none()

            if ride is None:
                raise NotFoundError("Ride not found")
            if ride.status != RideStatus.PUBLISHED.value:
                raise ConflictError("Ride is not available for booking")
            if ride.created_by == user_id:
                raise ConflictError("Cannot book your own ride")
            if await self.has_existing_booking(ride_id, user_id):
                raise ConflictError("You already have a booking for this ride")

            # Step 2: recompute availability
            available = max(ride.total_seats - await self.count_active_seats(ride_id), 0)
            if booked_seats > available:
                logger.warning(
                    "booking_failed_no_seats",
                    ride_id=str(ride_id),
                    requested=booked_seats,
                    available=available,
                )
                raise ConflictError(seats_message(available))

            # Step 3: compare-and-swap the ride version
            cas = await self.session.execute(
                update(Ride)
                .where(Ride.id == ride_id, Ride.version == ride.version)
                .values(version=Ride.version + 1)
                .execution_options(synchronize_session=False)
            )

            if cas.rowcount == 0:
                reservation_retries.inc()
                logger.info(
                    "booking_retry",
                    ride_id=str(ride_id),
                    attempt=attempt,
                    reason="version_conflict",
                )
                await self.session.rollback()
                continue

            # Step 4: insert the booking in the same transaction
            booking = Booking(
                ride_id=ride_id,
                user_id=user_id,
                booked_seats=booked_seats,
                total_amount=self.calculate_total_amount(ride.price_per_seat, booked_seats),
                status=BookingStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                payment_type=PaymentType(payment_type).value,
                pickup_location_id=pickup_location_id,
                drop_location_id=drop_location_id,
                stopover_id=stopover_id,
            )
            self.session.add(booking)
            try:
                await self.session.flush()
            except IntegrityError:
                # Partial unique index: a parallel request by the same rider won
                await self.session.rollback()
                raise ConflictError("You already have a booking for this ride")

            booking_latency.observe(time.perf_counter() - started)
            logger.info(
                "booking_created",
                booking_id=str(booking.id),
                ride_id=str(ride_id),
                user_id=str(user_id),
                seats=booked_seats,
                attempt=attempt,
            )
            return BookingResult(
                booking=booking,
                ride_id=ride_id,
                departure_datetime=as_utc(ride.departure_datetime),
                price_per_seat=Decimal(str(ride.price_per_seat)),
                total_seats=ride.total_seats,
                available_seats=available - booked_seats,
                attempts=attempt,
            )

        logger.warning("booking_retries_exhausted", ride_id=str(ride_id), attempts=self.max_retries)
        raise ConflictError("Booking failed due to high demand. Please try again.")

    # State machine

    async def _ride_owner_and_departure(self, ride_id: uuid.UUID):
        return (
            await self.session.execute(
                select(Ride.created_by, Ride.departure_datetime).where(Ride.id == ride_id)
            )
        ).one()

    @staticmethod
    def _actors(booking: Booking, ride_owner_id: uuid.UUID, user_id: uuid.UUID) -> set[BookingActor]:
        actors = set()
        if booking.user_id == user_id:
            actors.add(BookingActor.RIDER)
        if ride_owner_id == user_id:
            actors.add(BookingActor.RIDE_OWNER)
        return actors

    async def _authorize(self, booking: Booking, user_id: uuid.UUID, action: BookingAction):
        ride = await self._ride_owner_and_departure(booking.ride_id)
        if not self._actors(booking, ride.created_by, user_id) & BOOKING_ACTION_POLICY[action]:
            record_booking_transition(action.value, ok=False)
            verb = "update payment for" if action == BookingAction.UPDATE_PAYMENT else action.value
            raise AuthorizationError(f"Not authorized to {verb} this booking")
        return ride

    async def _transition(self, booking_id: uuid.UUID, user_id: uuid.UUID, action: BookingAction) -> Booking:
        booking = await self.get(booking_id)
        ride = await self._authorize(booking, user_id, action)

        current = BookingStatus(booking.status)
        target = BOOKING_ACTION_TARGET[action]
        if not can_transition(current, target):
            record_booking_transition(action.value, ok=False)
            raise ConflictError(_STATE_ERRORS.get((action, current), f"Cannot {action.value} a {current.value} booking"))

        if action == BookingAction.COMPLETE and as_utc(ride.departure_datetime) > utcnow():
            record_booking_transition(action.value, ok=False)
            raise ConflictError("Booking cannot be completed before the ride departs")

        if target == BookingStatus.CANCELLED:
            # Freed seats invalidate any reservation computed against the old sum.
            # Ride row is locked before the booking row, same order as create().
            await self.session.execute(
                update(Ride)
                .where(Ride.id == booking.ride_id)
                .values(version=Ride.version + 1)
                .execution_options(synchronize_session=False)
            )

        result = await self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == current.value)
            .values(status=target.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            record_booking_transition(action.value, ok=False)
            raise ConflictError("Booking status changed concurrently. Please try again.")

        record_booking_transition(action.value, ok=True)
        logger.info(
            f"booking_{target.value}",
            booking_id=str(booking_id),
            ride_id=str(booking.ride_id),
            actor_id=str(user_id),
            previous_status=current.value,
            seats=booking.booked_seats,
        )
        return await self.get(booking_id)

    async def cancel(self, booking_id: uuid.UUID, user_id: uuid.UUID) -> Booking:
        return await self._transition(booking_id, user_id, BookingAction.CANCEL)

    async def confirm(self, booking_id: uuid.UUID, user_id: uuid.UUID) -> Booking:
        return await self._transition(booking_id, user_id, BookingAction.CONFIRM)

    async def complete(self, booking_id: uuid.UUID, user_id: uuid.UUID) -> Booking:
        return await self._transition(booking_id, user_id, BookingAction.COMPLETE)

    async def update_payment_status(
        self, booking_id: uuid.UUID, payment_status: PaymentStatus, user_id: uuid.UUID
    ) -> Booking:
        """Payment status moves independently of the booking status."""
        booking = await self.get(booking_id)
        await self._authorize(booking, user_id, BookingAction.UPDATE_PAYMENT)

        await self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(payment_status=PaymentStatus(payment_status).value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "booking_payment_status_updated",
            booking_id=str(booking_id),
            actor_id=str(user_id),
            previous=booking.payment_status,
            payment_status=PaymentStatus(payment_status).value,
        )
        return await self.get(booking_id)

    async def cancel_active_for_ride(self, ride_id: uuid.UUID) -> int:
        """Cancel every pending/confirmed booking of a ride (ride cancellation cascade)."""
        result = await self.session.execute(
            update(Booking)
            .where(
                Booking.ride_id == ride_id,
                Booking.status.in_([BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]),
            )
            .values(status=BookingStatus.CANCELLED.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # Statistics

    async def get_statistics(self, user_id: uuid.UUID, as_owner: bool = False) -> dict:
        """Counts per status plus revenue and average amount over non-cancelled bookings."""
        not_cancelled = Booking.status != BookingStatus.CANCELLED.value
        stmt = select(
            func.count(Booking.id).label("total_bookings"),
            *[
                func.count(case((Booking.status == status.value, 1))).label(f"{status.value}_bookings")
                for status in BookingStatus
            ],
            func.coalesce(func.sum(case((not_cancelled, Booking.total_amount))), 0).label("total_revenue"),
            func.avg(case((not_cancelled, Booking.total_amount))).label("average_amount"),
        )
        if as_owner:
            stmt = stmt.join(Ride, Ride.id == Booking.ride_id).where(Ride.created_by == user_id)
        else:
            stmt = stmt.where(Booking.user_id == user_id)

        row = (await self.session.execute(stmt)).one()
        stats = {key: int(row._mapping[key]) for key in row._mapping if key.endswith("_bookings")}
        stats["total_revenue"] = Decimal(str(row.total_revenue)).quantize(CENTS, rounding=ROUND_HALF_UP)
        stats["average_amount"] = Decimal(str(row.average_amount or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)
        return stats
