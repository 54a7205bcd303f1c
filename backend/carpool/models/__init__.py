from carpool.models.ride import Ride
from carpool.models.ride_location import RideLocation
from carpool.models.booking import Booking

__all__ = ["Ride", "RideLocation", "Booking"]
