"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own file-backed SQLite database (WAL mode, so
concurrent sessions behave like independent connections) and an HTTP
client whose requests each run in their own session, committed on
success exactly like production ``get_db``.
"""

import os

# Settings are read once and cached: configure before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("MAPS_API_KEY", "test-maps-key")
os.environ.setdefault("BOOKING_MAX_RETRIES", "50")

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from carpool.api.deps import get_location_service
from carpool.core.security import create_access_token
from carpool.db.base import Base
from carpool.db.session import get_db
from carpool.main import app
from carpool.services.cache_service import RouteCache
from carpool.services.location_service import LocationService

MAPS_BASE_URL = "https://maps.test/maps/api"

# Berlin -> Hamburg: 289.4 km, 2h 55m
DISTANCE_MATRIX_OK = {
    "status": "OK",
    "origin_addresses": ["Berlin, Germany"],
    "destination_addresses": ["Hamburg, Germany"],
    "rows": [
        {
            "elements": [
                {
                    "status": "OK",
                    "distance": {"text": "289 km", "value": 289400},
                    "duration": {"text": "2 hours 55 mins", "value": 10500},
                }
            ]
        }
    ],
}


def future(days: int = 2) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def ride_payload(**overrides) -> dict:
    payload = {
        "totalSeats": 4,
        "pricePerSeat": "10.00",
        "departureDateTime": future().isoformat(),
        "pickupLocation": {"address": "Berlin Hbf", "latitude": 52.5251, "longitude": 13.3694},
        "dropLocation": {"address": "Hamburg Hbf", "latitude": 53.5530, "longitude": 10.0069},
        "stopOvers": [],
    }
    payload.update(overrides)
    return payload


def headers_for(user_id: uuid.UUID) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id)})}"}


def build_location_service(handler, timeout: float = 1.0) -> LocationService:
    """LocationService talking to an in-process mock of the Distance Matrix API."""
    return LocationService(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        cache=RouteCache(None, ttl=300),
        api_key="test-maps-key",
        base_url=MAPS_BASE_URL,
        timeout=timeout,
    )


def distance_matrix_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=DISTANCE_MATRIX_OK)


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Fresh schema per test in a throwaway SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'carpool_test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=10000")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for direct store-level tests and fixture setup."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def location_service() -> AsyncGenerator[LocationService, None]:
    service = build_location_service(distance_matrix_ok)
    yield service
    await service.http_client.aclose()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, location_service) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client; every request runs in its own session, like production."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_location_service] = lambda: location_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def driver_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def driver_headers(driver_id) -> dict:
    return headers_for(driver_id)


@pytest.fixture
def rider_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def rider_headers(rider_id) -> dict:
    return headers_for(rider_id)


@pytest.fixture
def create_ride(client: AsyncClient, driver_headers):
    """Factory: post a ride as the driver, optionally publishing it."""

    async def _create(publish: bool = True, headers: dict = None, **overrides) -> dict:
        headers = headers or driver_headers
        response = await client.post("/api/v1/rides", json=ride_payload(**overrides), headers=headers)
        assert response.status_code == 201, response.text
        ride = response.json()["data"]
        if publish:
            published = await client.post(f"/api/v1/rides/{ride['id']}/publish", headers=headers)
            assert published.status_code == 200, published.text
            ride = published.json()["data"]
        return ride

    return _create


@pytest_asyncio.fixture
async def published_ride(create_ride) -> dict:
    """Published ride: 4 seats at 10.00."""
    return await create_ride()


@pytest.fixture
def book(client: AsyncClient):
    """Factory: book seats on a ride as the given user."""

    async def _book(ride_id: str, user_id: uuid.UUID, seats: int = 1, **extra) -> httpx.Response:
        return await client.post(
            "/api/v1/bookings",
            json={"rideId": ride_id, "bookedSeats": seats, **extra},
            headers=headers_for(user_id),
        )

    return _book
