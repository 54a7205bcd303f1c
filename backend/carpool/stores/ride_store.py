"""
Ride store: ride records, the publication lifecycle and modification rules.

Every status change and every field update is a compare-and-swap on the
ride `version`, the same token seat reservation relies on. A booking that
read the ride before an unpublish, a price change or a seat-count change
therefore fails its own CAS and re-reads the new state.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.core.config import get_settings
from carpool.core.errors import ERROR_BY_KIND, ConflictError, ErrorKind, NotFoundError, ValidationError
from carpool.core.logging import get_logger
from carpool.db.base import as_utc, utcnow
from carpool.domain.enums import (
    LOCKED_RIDE_STATUSES,
    BookingStatus,
    LocationType,
    RideStatus,
    can_transition_ride,
)
from carpool.models.booking import Booking
from carpool.models.ride import Ride
from carpool.models.ride_location import RideLocation
from carpool.stores.booking_store import BookingStore, SeatAvailability

logger = get_logger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "vehicle_information_id",
        "total_seats",
        "price_per_seat",
        "distance",
        "estimated_time",
        "luggage_allowed",
        "women_only",
        "driver_verified",
        "two_passenger_max_back",
        "departure_datetime",
    }
)

SORT_COLUMNS = {
    "price": Ride.price_per_seat,
    "departure_time": Ride.departure_datetime,
    "distance": Ride.distance,
    "created_at": Ride.created_at,
}


@dataclass
class ModificationCheck:
    can_modify: bool
    reason: Optional[str] = None
    kind: Optional[ErrorKind] = None
    ride: Optional[Ride] = None


@dataclass
class RideSearch:
    passengers: int = 1
    max_price: Optional[float] = None
    women_only: bool = False
    driver_verified: bool = False
    departure_date: Optional[datetime] = None
    pickup_location: Optional[str] = None
    drop_location: Optional[str] = None
    sort_by: str = "departure_time"
    sort_order: str = "asc"
    page: int = 1
    limit: int = 20


def _ensure_future(departure: datetime) -> None:
    if as_utc(departure) <= utcnow():
        raise ValidationError("Departure date must be in the future")


def _address_filter(location_type: LocationType, text: str):
    return exists().where(
        RideLocation.ride_id == Ride.id,
        RideLocation.location_type == location_type.value,
        RideLocation.address.ilike(f"%{text}%"),
    )


class RideStore:
    def __init__(self, session: AsyncSession, cutoff_hours: Optional[int] = None):
        self.session = session
        self.cutoff_hours = (
            cutoff_hours if cutoff_hours is not None else get_settings().RIDE_MODIFICATION_CUTOFF_HOURS
        )
        self.bookings = BookingStore(session)

    async def find_by_id(self, ride_id: uuid.UUID) -> Optional[Ride]:
        result = await self.session.execute(
            select(Ride).where(Ride.id == ride_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, ride_id: uuid.UUID) -> Ride:
        ride = await self.find_by_id(ride_id)
        if ride is None:
            raise NotFoundError("Ride not found")
        return ride

    async def create(self, data: dict[str, Any]) -> Ride:
        _ensure_future(data["departure_datetime"])
        fields = {key: value for key, value in data.items() if key in UPDATABLE_FIELDS}
        ride = Ride(
            created_by=data["created_by"],
            status=RideStatus.DRAFT.value,
            version=1,
            **fields,
        )
        self.session.add(ride)
        await self.session.flush()
        logger.info("ride_created", ride_id=str(ride.id), created_by=str(ride.created_by))
        return ride

    async def update(self, ride_id: uuid.UUID, patch: dict[str, Any]) -> Ride:
        fields = {key: value for key, value in patch.items() if key in UPDATABLE_FIELDS}
        if not fields:
            raise ValidationError("No valid fields to update")

        if "departure_datetime" in fields:
            _ensure_future(fields["departure_datetime"])

        version = (
            await self.session.execute(select(Ride.version).where(Ride.id == ride_id))
        ).scalar_one_or_none()
        if version is None:
            raise NotFoundError("Ride not found")

        if "total_seats" in fields and await self.bookings.count_active_seats(ride_id) > 0:
            raise ConflictError("Cannot change total seats while the ride has active bookings")

        result = await self.session.execute(
            update(Ride)
            .where(Ride.id == ride_id, Ride.version == version)
            .values(**fields, version=Ride.version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError("Ride was modified concurrently. Please try again.")

        logger.info("ride_updated", ride_id=str(ride_id), fields=sorted(fields))
        return await self.get(ride_id)

    async def can_modify(self, ride_id: uuid.UUID, user_id: uuid.UUID) -> ModificationCheck:
        ride = await self.find_by_id(ride_id)
        if ride is None:
            return ModificationCheck(False, "Ride not found", ErrorKind.NOT_FOUND)
        if ride.created_by != user_id:
            return ModificationCheck(False, "Not authorized to modify this ride", ErrorKind.FORBIDDEN, ride)

        status = RideStatus(ride.status)
        if status in LOCKED_RIDE_STATUSES:
            return ModificationCheck(
                False, f"Cannot modify a ride that is {status.value}", ErrorKind.CONFLICT, ride
            )

        departure = as_utc(ride.departure_datetime)
        now = utcnow()
        if departure <= now:
            return ModificationCheck(False, "Ride has already started", ErrorKind.CONFLICT, ride)

        if departure - now < timedelta(hours=self.cutoff_hours) and await self.bookings.has_confirmed_bookings(
            ride_id
        ):
            return ModificationCheck(
                False,
                f"Cannot modify a ride with confirmed bookings less than {self.cutoff_hours} hours before departure",
                ErrorKind.CONFLICT,
                ride,
            )

        return ModificationCheck(True, ride=ride)

    async def ensure_modifiable(self, ride_id: uuid.UUID, user_id: uuid.UUID) -> Ride:
        check = await self.can_modify(ride_id, user_id)
        if not check.can_modify:
            raise ERROR_BY_KIND[check.kind](check.reason)
        return check.ride

    async def _set_status(self, ride: Ride, target: RideStatus) -> Ride:
        current = ride.status
        result = await self.session.execute(
            update(Ride)
            .where(Ride.id == ride.id, Ride.status == current, Ride.version == ride.version)
            .values(status=target.value, version=Ride.version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError("Ride was modified concurrently. Please try again.")

        logger.info("ride_status_changed", ride_id=str(ride.id), previous=current, status=target.value)
        return await self.get(ride.id)

    async def transition(self, ride_id: uuid.UUID, target: RideStatus) -> Ride:
        ride = await self.get(ride_id)
        current = RideStatus(ride.status)
        if not can_transition_ride(current, target):
            raise ConflictError(f"Cannot change ride status from {current.value} to {target.value}")

        if target == RideStatus.CANCELLED:
            return await self.delete(ride_id)
        if target == RideStatus.PUBLISHED:
            _ensure_future(ride.departure_datetime)
        return await self._set_status(ride, target)

    async def publish(self, ride_id: uuid.UUID) -> Ride:
        ride = await self.get(ride_id)
        if ride.status == RideStatus.PUBLISHED.value:
            raise ConflictError("Ride is already published")
        if ride.status != RideStatus.DRAFT.value:
            raise ConflictError(f"Only draft rides can be published (ride is {ride.status})")
        _ensure_future(ride.departure_datetime)
        return await self._set_status(ride, RideStatus.PUBLISHED)

    async def unpublish(self, ride_id: uuid.UUID) -> Ride:
        ride = await self.get(ride_id)
        if ride.status != RideStatus.PUBLISHED.value:
            raise ConflictError(f"Only published rides can be unpublished (ride is {ride.status})")
        return await self._set_status(ride, RideStatus.DRAFT)

    async def delete(self, ride_id: uuid.UUID) -> Ride:
        """Soft-cancel the ride and every booking still holding seats on it."""
        ride = await self.get(ride_id)
        if RideStatus(ride.status) in LOCKED_RIDE_STATUSES:
            raise ConflictError(f"Cannot cancel a ride that is {ride.status}")

        ride = await self._set_status(ride, RideStatus.CANCELLED)
        cancelled = await self.bookings.cancel_active_for_ride(ride_id)
        logger.info("ride_cancelled", ride_id=str(ride_id), bookings_cancelled=cancelled)
        return ride

    async def get_available_seats(self, ride_id: uuid.UUID) -> SeatAvailability:
        return await self.bookings.get_available_seats(ride_id)

    async def find_by_creator(
        self,
        user_id: uuid.UUID,
        status: Optional[RideStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Ride], int]:
        conditions = [Ride.created_by == user_id]
        if status is not None:
            conditions.append(Ride.status == status.value)

        total = (
            await self.session.execute(select(func.count()).select_from(Ride).where(*conditions))
        ).scalar_one()
        result = await self.session.execute(
            select(Ride)
            .where(*conditions)
            .order_by(Ride.departure_datetime.desc(), Ride.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def search(self, criteria: RideSearch) -> tuple[list[tuple[Ride, int]], int]:
        """Published future rides with room for `passengers`, with their available seats."""
        booked = (
            select(Booking.ride_id, func.sum(Booking.booked_seats).label("booked"))
            .where(Booking.status != BookingStatus.CANCELLED.value)
            .group_by(Booking.ride_id)
            .subquery()
        )
        available = (Ride.total_seats - func.coalesce(booked.c.booked, 0)).label("available_seats")

        conditions = [
            Ride.status == RideStatus.PUBLISHED.value,
            Ride.departure_datetime > utcnow(),
            available >= criteria.passengers,
        ]
        if criteria.max_price is not None:
            conditions.append(Ride.price_per_seat <= criteria.max_price)
        if criteria.women_only:
            conditions.append(Ride.women_only.is_(True))
        if criteria.driver_verified:
            conditions.append(Ride.driver_verified.is_(True))
        if criteria.departure_date is not None:
            day = as_utc(criteria.departure_date).replace(hour=0, minute=0, second=0, microsecond=0)
            conditions.append(
                and_(Ride.departure_datetime >= day, Ride.departure_datetime < day + timedelta(days=1))
            )
        if criteria.pickup_location:
            conditions.append(_address_filter(LocationType.PICKUP, criteria.pickup_location))
        if criteria.drop_location:
            conditions.append(_address_filter(LocationType.DROP, criteria.drop_location))

        base = select(Ride, available).outerjoin(booked, booked.c.ride_id == Ride.id).where(*conditions)

        total = (await self.session.execute(select(func.count()).select_from(base.subquery()))).scalar_one()

        column = SORT_COLUMNS[criteria.sort_by]
        ordering = column.desc() if criteria.sort_order == "desc" else column.asc()
        result = await self.session.execute(
            base.order_by(ordering, Ride.id)
            .offset((criteria.page - 1) * criteria.limit)
            .limit(criteria.limit)
        )
        return [(ride, int(seats)) for ride, seats in result.all()], total
