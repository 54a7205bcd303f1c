"""
Ride endpoints: posting, editing, publication lifecycle and search.
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.api.deps import PageParams, get_location_service, get_page_params
from carpool.core.security import get_current_user_id
from carpool.db.session import get_db
from carpool.domain.enums import RideStatus
from carpool.schemas.common import ApiResponse
from carpool.schemas.ride import RideCreate, RideList, RideResponse, RideSeats, RideStatusUpdate, RideUpdate
from carpool.services import ride_service
from carpool.services.location_service import LocationService
from carpool.stores.ride_store import RideSearch

router = APIRouter(prefix="/rides", tags=["Rides"])


@router.post("", response_model=ApiResponse[RideResponse], status_code=status.HTTP_201_CREATED)
async def create_ride(
    ride_data: RideCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    location_service: LocationService = Depends(get_location_service),
):
    """
    Post a new ride in draft state.

    Distance and duration come from the mapping service; if it is down or
    slow the ride is still created with a zero estimate.
    """
    ride = await ride_service.create_ride(db, location_service, user_id, ride_data)
    return ApiResponse(message="Ride created successfully", data=ride)


@router.get("/my-rides", response_model=ApiResponse[RideList])
async def list_my_rides(
    ride_status: Optional[RideStatus] = Query(None, alias="status"),
    paging: PageParams = Depends(get_page_params),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    rides = await ride_service.list_my_rides(db, user_id, paging.page, paging.limit, status=ride_status)
    return ApiResponse(message="User rides retrieved successfully", data=rides)


@router.get("/search", response_model=ApiResponse[RideList])
async def search_rides(
    pickup_location: Optional[str] = Query(None, alias="pickupLocation", max_length=200),
    drop_location: Optional[str] = Query(None, alias="dropLocation", max_length=200),
    departure_date: Optional[date] = Query(None, alias="departureDate"),
    passengers: int = Query(1, ge=1, le=10),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", gt=0),
    women_only: bool = Query(False, alias="womenOnly"),
    driver_verified: bool = Query(False, alias="driverVerified"),
    sort_by: Literal["price", "departure_time", "distance", "created_at"] = Query(
        "departure_time", alias="sortBy"
    ),
    sort_order: Literal["asc", "desc"] = Query("asc", alias="sortOrder"),
    paging: PageParams = Depends(get_page_params),
    db: AsyncSession = Depends(get_db),
):
    """Public search over published rides that still have room for `passengers`."""
    criteria = RideSearch(
        passengers=passengers,
        max_price=max_price,
        women_only=women_only,
        driver_verified=driver_verified,
        departure_date=(
            datetime.combine(departure_date, time.min, tzinfo=timezone.utc) if departure_date else None
        ),
        pickup_location=pickup_location,
        drop_location=drop_location,
        sort_by=sort_by,
        sort_order=sort_order,
        page=paging.page,
        limit=paging.limit,
    )
    rides = await ride_service.search_rides(db, criteria)
    return ApiResponse(message="Rides found successfully", data=rides)


@router.get("/{ride_id}", response_model=ApiResponse[RideResponse])
async def get_ride(ride_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    ride = await ride_service.get_ride(db, ride_id)
    return ApiResponse(message="Ride details retrieved successfully", data=ride)


@router.put("/{ride_id}", response_model=ApiResponse[RideResponse])
async def update_ride(
    ride_id: uuid.UUID,
    ride_data: RideUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    location_service: LocationService = Depends(get_location_service),
):
    """
    Update ride fields and/or replace its route.

    A route change replaces every waypoint in the same transaction as the
    ride update; omitted pickup/drop are kept from the current route.
    """
    ride = await ride_service.update_ride(db, location_service, ride_id, user_id, ride_data)
    return ApiResponse(message="Ride updated successfully", data=ride)


@router.delete("/{ride_id}", response_model=ApiResponse[RideResponse])
async def delete_ride(
    ride_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Soft-cancel the ride; its pending and confirmed bookings are cancelled too."""
    ride = await ride_service.delete_ride(db, ride_id, user_id)
    return ApiResponse(message="Ride cancelled successfully", data=ride)


@router.post("/{ride_id}/publish", response_model=ApiResponse[RideResponse])
async def publish_ride(
    ride_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    ride = await ride_service.publish_ride(db, ride_id, user_id)
    return ApiResponse(message="Ride published successfully", data=ride)


@router.post("/{ride_id}/unpublish", response_model=ApiResponse[RideResponse])
async def unpublish_ride(
    ride_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    ride = await ride_service.unpublish_ride(db, ride_id, user_id)
    return ApiResponse(message="Ride unpublished successfully", data=ride)


@router.post("/{ride_id}/complete", response_model=ApiResponse[RideResponse])
async def complete_ride(
    ride_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    ride = await ride_service.complete_ride(db, ride_id, user_id)
    return ApiResponse(message="Ride completed successfully", data=ride)


@router.put("/{ride_id}/status", response_model=ApiResponse[RideResponse])
async def update_ride_status(
    ride_id: uuid.UUID,
    body: RideStatusUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    ride = await ride_service.update_ride_status(db, ride_id, user_id, body.status)
    return ApiResponse(message="Ride status updated successfully", data=ride)


@router.get("/{ride_id}/available-seats", response_model=ApiResponse[RideSeats])
async def get_available_seats(ride_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    seats = await ride_service.get_available_seats(db, ride_id)
    return ApiResponse(message="Available seats retrieved successfully", data=seats)
