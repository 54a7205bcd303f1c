"""
Ride waypoint store.

Waypoints are written in bulk and never patched: a route change deletes
every row of the ride and recreates the set. Both statements run on the
caller's session, so they commit (or roll back) together with the ride
update and readers never observe a ride without waypoints.
"""

import uuid
from typing import Iterable, Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.core.errors import ValidationError
from carpool.domain.enums import LocationType
from carpool.models.ride_location import RideLocation

# pickup, then stopovers by sequence, then drop
_ROUTE_ORDER = case(
    (RideLocation.location_type == LocationType.PICKUP.value, 0),
    (RideLocation.location_type == LocationType.STOPOVER.value, 1),
    else_=2,
)

_LOCATION_TYPES = {t.value for t in LocationType}


def _point(location: dict, location_type: LocationType, sequence_order: int) -> dict:
    return {
        "location_type": location_type.value,
        "address": location.get("address"),
        "latitude": location.get("latitude"),
        "longitude": location.get("longitude"),
        "sequence_order": sequence_order,
    }


class RideLocationStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def build_waypoints(pickup: dict, drop: dict, stopovers: Iterable[dict] = ()) -> list[dict]:
        """Pickup is always order 0 and drop is always stopovers + 1."""
        stopovers = list(stopovers)
        waypoints = [_point(pickup, LocationType.PICKUP, 0)]
        for index, stopover in enumerate(stopovers):
            order = stopover.get("sequence_order")
            waypoints.append(_point(stopover, LocationType.STOPOVER, index + 1 if order is None else order))
        waypoints.append(_point(drop, LocationType.DROP, len(stopovers) + 1))
        return waypoints

    @staticmethod
    def validate_location_data(data: dict) -> list[str]:
        errors = []

        address = data.get("address")
        if not address or not str(address).strip():
            errors.append("Address is required")

        latitude = data.get("latitude")
        if latitude is None or not -90 <= latitude <= 90:
            errors.append("Valid latitude is required (-90 to 90)")

        longitude = data.get("longitude")
        if longitude is None or not -180 <= longitude <= 180:
            errors.append("Valid longitude is required (-180 to 180)")

        if data.get("location_type") not in _LOCATION_TYPES:
            errors.append("Location type must be pickup, drop, or stopover")

        sequence_order = data.get("sequence_order")
        if sequence_order is not None and sequence_order < 0:
            errors.append("Sequence order must be a non-negative integer")

        return errors

    def _check(self, waypoints: list[dict]) -> None:
        errors = [
            f"{waypoint.get('location_type', 'location')}[{index}]: {message}"
            for index, waypoint in enumerate(waypoints)
            for message in self.validate_location_data(waypoint)
        ]
        if errors:
            raise ValidationError("Invalid location data", errors=errors)

    async def create_multiple(self, ride_id: uuid.UUID, waypoints: list[dict]) -> list[RideLocation]:
        self._check(waypoints)
        locations = [RideLocation(ride_id=ride_id, **waypoint) for waypoint in waypoints]
        self.session.add_all(locations)
        await self.session.flush()
        return sorted(locations, key=_sort_key)

    async def find_by_id(self, location_id: uuid.UUID) -> Optional[RideLocation]:
        return await self.session.get(RideLocation, location_id)

    async def find_by_ride_id(self, ride_id: uuid.UUID) -> list[RideLocation]:
        result = await self.session.execute(
            select(RideLocation)
            .where(RideLocation.ride_id == ride_id)
            .order_by(_ROUTE_ORDER, RideLocation.sequence_order)
        )
        return list(result.scalars().all())

    async def find_by_ride_ids(self, ride_ids: list[uuid.UUID]) -> dict[uuid.UUID, list[RideLocation]]:
        """Waypoints for a page of rides in one query."""
        routes: dict[uuid.UUID, list[RideLocation]] = {ride_id: [] for ride_id in ride_ids}
        if not ride_ids:
            return routes
        result = await self.session.execute(
            select(RideLocation)
            .where(RideLocation.ride_id.in_(ride_ids))
            .order_by(RideLocation.ride_id, _ROUTE_ORDER, RideLocation.sequence_order)
        )
        for location in result.scalars().all():
            routes[location.ride_id].append(location)
        return routes

    async def _first_of_type(self, ride_id: uuid.UUID, location_type: LocationType) -> Optional[RideLocation]:
        result = await self.session.execute(
            select(RideLocation)
            .where(RideLocation.ride_id == ride_id, RideLocation.location_type == location_type.value)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_pickup_location(self, ride_id: uuid.UUID) -> Optional[RideLocation]:
        return await self._first_of_type(ride_id, LocationType.PICKUP)

    async def get_drop_location(self, ride_id: uuid.UUID) -> Optional[RideLocation]:
        return await self._first_of_type(ride_id, LocationType.DROP)

    async def get_stopover_locations(self, ride_id: uuid.UUID) -> list[RideLocation]:
        result = await self.session.execute(
            select(RideLocation)
            .where(
                RideLocation.ride_id == ride_id,
                RideLocation.location_type == LocationType.STOPOVER.value,
            )
            .order_by(RideLocation.sequence_order)
        )
        return list(result.scalars().all())

    async def delete_by_ride_id(self, ride_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(RideLocation)
            .where(RideLocation.ride_id == ride_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def replace_for_ride(self, ride_id: uuid.UUID, waypoints: list[dict]) -> list[RideLocation]:
        """Delete-then-recreate inside the caller's transaction."""
        # Validate before deleting so a bad route never empties the ride
        self._check(waypoints)
        await self.delete_by_ride_id(ride_id)
        return await self.create_multiple(ride_id, waypoints)

    async def belongs_to_ride(self, location_id: uuid.UUID, ride_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideLocation)
            .where(RideLocation.id == location_id, RideLocation.ride_id == ride_id)
        )
        return result.scalar_one() > 0


def _sort_key(location: RideLocation) -> tuple[int, int]:
    order = {LocationType.PICKUP.value: 0, LocationType.STOPOVER.value: 1}
    return order.get(location.location_type, 2), location.sequence_order
