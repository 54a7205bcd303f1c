"""
Mapping-service client (Google Distance Matrix compatible).

Distance lookups are best-effort: ride creation and route changes call
``estimate_trip``, which bounds the lookup with a timeout and falls back
to a zero estimate on any failure. Successful lookups are cached in the
injected ``RouteCache``.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from carpool.core.logging import get_logger
from carpool.core.metrics import record_location_lookup
from carpool.services.cache_service import RouteCache

logger = get_logger(__name__)


class LocationLookupError(Exception):
    """The mapping service could not produce a distance."""


@dataclass(frozen=True)
class TripEstimate:
    distance_km: Decimal
    estimated_minutes: int

    @classmethod
    def zero(cls) -> "TripEstimate":
        return cls(distance_km=Decimal("0"), estimated_minutes=0)


def coordinates(point: dict) -> str:
    return f"{point['latitude']},{point['longitude']}"


class LocationService:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: RouteCache,
        api_key: str,
        base_url: str,
        timeout: float = 5.0,
    ):
        self.http_client = http_client
        self.cache = cache
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def calculate_distance(self, origin: str, destination: str, mode: str = "driving") -> dict:
        key = self.cache.make_key(origin, destination, mode)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        if not self.api_key:
            raise LocationLookupError("Mapping API key is not configured")

        try:
            response = await self.http_client.get(
                f"{self.base_url}/distancematrix/json",
                params={
                    "origins": origin,
                    "destinations": destination,
                    "mode": mode,
                    "units": "metric",
                    "key": self.api_key,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LocationLookupError(f"Distance Matrix request failed: {e}") from e

        if payload.get("status") != "OK":
            raise LocationLookupError(f"Distance Matrix API error: {payload.get('status')}")

        try:
            element = payload["rows"][0]["elements"][0]
        except (KeyError, IndexError) as e:
            raise LocationLookupError("Distance Matrix response has no elements") from e

        if element.get("status") != "OK":
            raise LocationLookupError(f"Could not calculate distance: {element.get('status')}")

        result = {
            "origin": (payload.get("origin_addresses") or [origin])[0],
            "destination": (payload.get("destination_addresses") or [destination])[0],
            "distance": element["distance"],
            "duration": element["duration"],
            "mode": mode,
        }
        await self.cache.set(key, result)
        return result

    async def estimate_trip(self, pickup: dict, drop: dict, mode: str = "driving") -> TripEstimate:
        """Distance (km) and duration (minutes) between two waypoints, or zeros."""
        try:
            data = await asyncio.wait_for(
                self.calculate_distance(coordinates(pickup), coordinates(drop), mode),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            record_location_lookup("timeout")
            logger.warning("trip_estimate_fallback", reason="timeout", timeout=self.timeout)
            return TripEstimate.zero()
        except LocationLookupError as e:
            record_location_lookup("fallback")
            logger.warning("trip_estimate_fallback", reason=str(e))
            return TripEstimate.zero()

        record_location_lookup("ok")
        distance_km = (Decimal(str(data["distance"]["value"])) / 1000).quantize(Decimal("0.01"))
        minutes = round(data["duration"]["value"] / 60)
        return TripEstimate(distance_km=distance_km, estimated_minutes=minutes)


def build_location_service(
    http_client: httpx.AsyncClient, cache: RouteCache, settings, timeout: Optional[float] = None
) -> LocationService:
    return LocationService(
        http_client=http_client,
        cache=cache,
        api_key=settings.MAPS_API_KEY,
        base_url=settings.MAPS_BASE_URL,
        timeout=timeout if timeout is not None else settings.MAPS_TIMEOUT_SECONDS,
    )
