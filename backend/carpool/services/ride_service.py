"""
Ride orchestration: creation with trip estimates, modification rules,
route replacement and the publication lifecycle.
"""

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from carpool.core.errors import AuthorizationError, ConflictError, ValidationError
from carpool.core.logging import get_logger
from carpool.core.metrics import record_ride_event
from carpool.domain.enums import RideStatus
from carpool.models.ride import Ride
from carpool.models.ride_location import RideLocation
from carpool.schemas.common import Pagination
from carpool.schemas.ride import (
    RideCreate,
    RideList,
    RideLocationResponse,
    RideResponse,
    RideSeats,
    RideUpdate,
)
from carpool.services.location_service import LocationService
from carpool.stores.ride_location_store import RideLocationStore
from carpool.stores.ride_store import RideSearch, RideStore

logger = get_logger(__name__)


def _ride_response(ride: Ride, locations: list[RideLocation], available_seats: Optional[int] = None) -> RideResponse:
    response = RideResponse.model_validate(ride)
    response.locations = [RideLocationResponse.model_validate(loc) for loc in locations]
    response.available_seats = available_seats
    return response


def _as_point(location: RideLocation) -> dict:
    return {
        "address": location.address,
        "latitude": location.latitude,
        "longitude": location.longitude,
    }


async def create_ride(
    db: AsyncSession, location_service: LocationService, user_id: uuid.UUID, payload: RideCreate
) -> RideResponse:
    pickup = payload.pickup_location.model_dump()
    drop = payload.drop_location.model_dump()
    estimate = await location_service.estimate_trip(pickup, drop)

    data = payload.model_dump(exclude={"pickup_location", "drop_location", "stop_overs"})
    data.update(
        created_by=user_id,
        distance=estimate.distance_km,
        estimated_time=estimate.estimated_minutes,
    )
    ride = await RideStore(db).create(data)

    waypoints = RideLocationStore.build_waypoints(
        pickup, drop, [stop.model_dump() for stop in payload.stop_overs]
    )
    locations = await RideLocationStore(db).create_multiple(ride.id, waypoints)

    record_ride_event("created")
    return _ride_response(ride, locations, available_seats=ride.total_seats)


async def get_ride(db: AsyncSession, ride_id: uuid.UUID) -> RideResponse:
    store = RideStore(db)
    ride = await store.get(ride_id)
    locations = await RideLocationStore(db).find_by_ride_id(ride_id)
    availability = await store.get_available_seats(ride_id)
    return _ride_response(ride, locations, availability.available_seats)


async def update_ride(
    db: AsyncSession,
    location_service: LocationService,
    ride_id: uuid.UUID,
    user_id: uuid.UUID,
    payload: RideUpdate,
) -> RideResponse:
    store = RideStore(db)
    location_store = RideLocationStore(db)
    await store.ensure_modifiable(ride_id, user_id)

    fields = payload.ride_fields()
    waypoints = None

    if payload.touches_route():
        if await store.bookings.count_active_seats(ride_id) > 0:
            raise ConflictError("Cannot change the route while the ride has active bookings")

        # Missing endpoints are kept from the current route
        pickup = payload.pickup_location.model_dump() if payload.pickup_location else None
        drop = payload.drop_location.model_dump() if payload.drop_location else None
        if pickup is None:
            pickup = _as_point(await location_store.get_pickup_location(ride_id))
        if drop is None:
            drop = _as_point(await location_store.get_drop_location(ride_id))

        if payload.stop_overs is not None:
            stopovers = [stop.model_dump() for stop in payload.stop_overs]
        else:
            stopovers = [
                {**_as_point(stop), "sequence_order": stop.sequence_order}
                for stop in await location_store.get_stopover_locations(ride_id)
            ]

        waypoints = RideLocationStore.build_waypoints(pickup, drop, stopovers)
        estimate = await location_service.estimate_trip(pickup, drop)
        fields.update(distance=estimate.distance_km, estimated_time=estimate.estimated_minutes)

    if not fields:
        raise ValidationError("No valid fields to update")

    ride = await store.update(ride_id, fields)
    if waypoints is not None:
        await location_store.replace_for_ride(ride_id, waypoints)
        logger.info("ride_route_replaced", ride_id=str(ride_id), waypoints=len(waypoints))

    record_ride_event("updated")
    return await get_ride(db, ride.id)


async def delete_ride(db: AsyncSession, ride_id: uuid.UUID, user_id: uuid.UUID) -> RideResponse:
    store = RideStore(db)
    await store.ensure_modifiable(ride_id, user_id)
    await store.delete(ride_id)
    record_ride_event("cancelled")
    return await get_ride(db, ride_id)


async def publish_ride(db: AsyncSession, ride_id: uuid.UUID, user_id: uuid.UUID) -> RideResponse:
    store = RideStore(db)
    await store.ensure_modifiable(ride_id, user_id)
    await store.publish(ride_id)
    record_ride_event("published")
    return await get_ride(db, ride_id)


async def unpublish_ride(db: AsyncSession, ride_id: uuid.UUID, user_id: uuid.UUID) -> RideResponse:
    store = RideStore(db)
    await store.ensure_modifiable(ride_id, user_id)
    await store.unpublish(ride_id)
    record_ride_event("unpublished")
    return await get_ride(db, ride_id)


async def update_ride_status(
    db: AsyncSession, ride_id: uuid.UUID, user_id: uuid.UUID, status: RideStatus
) -> RideResponse:
    """Owner-driven move along the ride state machine (start, complete, cancel...)."""
    store = RideStore(db)
    ride = await store.get(ride_id)
    if ride.created_by != user_id:
        raise AuthorizationError("Not authorized to modify this ride")

    await store.transition(ride_id, status)
    record_ride_event("status_changed")
    return await get_ride(db, ride_id)


async def complete_ride(db: AsyncSession, ride_id: uuid.UUID, user_id: uuid.UUID) -> RideResponse:
    return await update_ride_status(db, ride_id, user_id, RideStatus.COMPLETED)


async def _ride_list(db: AsyncSession, rides: list[tuple[Ride, int]], page: int, limit: int, total: int) -> RideList:
    routes = await RideLocationStore(db).find_by_ride_ids([ride.id for ride, _ in rides])
    return RideList(
        rides=[_ride_response(ride, routes[ride.id], seats) for ride, seats in rides],
        pagination=Pagination.build(page, limit, total),
    )


async def list_my_rides(
    db: AsyncSession,
    user_id: uuid.UUID,
    page: int,
    limit: int,
    status: Optional[RideStatus] = None,
) -> RideList:
    store = RideStore(db)
    rides, total = await store.find_by_creator(user_id, status=status, page=page, limit=limit)
    with_seats = []
    for ride in rides:
        availability = await store.get_available_seats(ride.id)
        with_seats.append((ride, availability.available_seats))
    return await _ride_list(db, with_seats, page, limit, total)


async def search_rides(db: AsyncSession, criteria: RideSearch) -> RideList:
    rides, total = await RideStore(db).search(criteria)
    return await _ride_list(db, rides, criteria.page, criteria.limit, total)


async def get_available_seats(db: AsyncSession, ride_id: uuid.UUID) -> RideSeats:
    availability = await RideStore(db).get_available_seats(ride_id)
    return RideSeats(
        ride_id=ride_id,
        total_seats=availability.total_seats,
        booked_seats=availability.booked_seats,
        available_seats=availability.available_seats,
    )
