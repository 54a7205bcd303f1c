from carpool.schemas.common import ApiResponse, CamelModel, Pagination
from carpool.schemas.ride import RideCreate, RideUpdate, RideResponse, RideList
from carpool.schemas.booking import BookingCreate, BookingResponse, BookingCreated, SeatAvailabilityResponse

__all__ = [
    "ApiResponse", "CamelModel", "Pagination",
    "RideCreate", "RideUpdate", "RideResponse", "RideList",
    "BookingCreate", "BookingResponse", "BookingCreated", "SeatAvailabilityResponse",
]
