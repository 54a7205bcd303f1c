"""
Tests for ride endpoints: posting, route management, the publication
lifecycle, modification rules and search.
"""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import select, update

from carpool.api.deps import get_location_service
from carpool.db.base import utcnow
from carpool.main import app
from carpool.models.booking import Booking
from carpool.models.ride import Ride
from conftest import build_location_service, future, headers_for, ride_payload


def route(ride: dict) -> list[tuple[str, str, int]]:
    return [(loc["location_type"], loc["address"], loc["sequence_order"]) for loc in ride["locations"]]


@pytest.mark.asyncio
async def test_create_ride(client: AsyncClient, driver_id, driver_headers):
    response = await client.post("/api/v1/rides", json=ride_payload(), headers=driver_headers)
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Ride created successfully"

    ride = body["data"]
    assert ride["created_by"] == str(driver_id)
    assert ride["status"] == "draft"
    assert ride["total_seats"] == 4
    assert ride["available_seats"] == 4
    assert Decimal(str(ride["price_per_seat"])) == Decimal("10.00")
    assert Decimal(str(ride["distance"])) == Decimal("289.40")
    assert ride["estimated_time"] == 175
    assert ride["luggage_allowed"] is True
    assert ride["women_only"] is False
    assert route(ride) == [("pickup", "Berlin Hbf", 0), ("drop", "Hamburg Hbf", 1)]


@pytest.mark.asyncio
async def test_create_ride_with_stopovers(client: AsyncClient, driver_headers):
    payload = ride_payload(
        stopOvers=[
            {"address": "Ludwigslust", "latitude": 53.3296, "longitude": 11.4973},
            {"address": "  Wittenberge  ", "latitude": 52.9994, "longitude": 11.7512},
        ]
    )
    response = await client.post("/api/v1/rides", json=payload, headers=driver_headers)
    assert response.status_code == 201, response.text

    assert route(response.json()["data"]) == [
        ("pickup", "Berlin Hbf", 0),
        ("stopover", "Ludwigslust", 1),
        ("stopover", "Wittenberge", 2),
        ("drop", "Hamburg Hbf", 3),
    ]


@pytest.mark.asyncio
async def test_create_ride_snake_case_payload(client: AsyncClient, driver_headers):
    payload = {
        "total_seats": 2,
        "price_per_seat": "7.50",
        "departure_datetime": future().isoformat(),
        "pickup_location": {"address": "A", "latitude": 1, "longitude": 1},
        "drop_location": {"address": "B", "latitude": 2, "longitude": 2},
        "women_only": True,
    }
    response = await client.post("/api/v1/rides", json=payload, headers=driver_headers)
    assert response.status_code == 201, response.text
    assert response.json()["data"]["women_only"] is True


@pytest.mark.asyncio
async def test_create_ride_mapping_error_falls_back_to_zero(client: AsyncClient, driver_headers):
    """A failing mapping service never blocks ride creation."""

    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"status": "UNKNOWN_ERROR"})

    service = build_location_service(server_error)
    app.dependency_overrides[get_location_service] = lambda: service

    response = await client.post("/api/v1/rides", json=ride_payload(), headers=driver_headers)
    assert response.status_code == 201, response.text
    assert Decimal(str(response.json()["data"]["distance"])) == Decimal("0")
    assert response.json()["data"]["estimated_time"] == 0
    await service.http_client.aclose()


@pytest.mark.asyncio
async def test_create_ride_mapping_timeout_falls_back_to_zero(client: AsyncClient, driver_headers):
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={})

    service = build_location_service(slow, timeout=0.05)
    app.dependency_overrides[get_location_service] = lambda: service

    response = await client.post("/api/v1/rides", json=ride_payload(), headers=driver_headers)
    assert response.status_code == 201, response.text
    assert response.json()["data"]["estimated_time"] == 0
    await service.http_client.aclose()


@pytest.mark.asyncio
async def test_create_ride_requires_auth(client: AsyncClient):
    response = await client.post("/api/v1/rides", json=ride_payload())
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_ride_past_departure(client: AsyncClient, driver_headers):
    payload = ride_payload(departureDateTime=(utcnow() - timedelta(hours=1)).isoformat())
    response = await client.post("/api/v1/rides", json=payload, headers=driver_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Departure date must be in the future"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"totalSeats": 0},
        {"totalSeats": 11},
        {"pricePerSeat": "0"},
        {"pricePerSeat": "-5.00"},
        {"pickupLocation": {"address": "Nowhere", "latitude": 91, "longitude": 0}},
        {"dropLocation": {"address": "Nowhere", "latitude": 0, "longitude": 181}},
        {"pickupLocation": {"address": "   ", "latitude": 1, "longitude": 1}},
        {"departureDateTime": "tomorrow-ish"},
    ],
)
async def test_create_ride_invalid_input(client: AsyncClient, driver_headers, overrides):
    response = await client.post("/api/v1/rides", json=ride_payload(**overrides), headers=driver_headers)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "validation"
    assert body["errors"]


@pytest.mark.asyncio
async def test_create_ride_missing_drop(client: AsyncClient, driver_headers):
    payload = ride_payload()
    del payload["dropLocation"]
    response = await client.post("/api/v1/rides", json=payload, headers=driver_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_get_ride(client: AsyncClient, published_ride):
    """Ride details are public."""
    response = await client.get(f"/api/v1/rides/{published_ride['id']}")
    assert response.status_code == 200
    ride = response.json()["data"]
    assert ride["id"] == published_ride["id"]
    assert ride["status"] == "published"
    assert ride["available_seats"] == 4
    assert len(ride["locations"]) == 2


@pytest.mark.asyncio
async def test_get_missing_ride(client: AsyncClient):
    response = await client.get(f"/api/v1/rides/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Ride not found", "error": "not_found"}


@pytest.mark.asyncio
async def test_get_ride_bad_id(client: AsyncClient):
    response = await client.get("/api/v1/rides/not-a-uuid")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_publish_unpublish_flow(client: AsyncClient, create_ride, driver_headers):
    ride = await create_ride(publish=False)
    assert ride["status"] == "draft"

    published = await client.post(f"/api/v1/rides/{ride['id']}/publish", headers=driver_headers)
    assert published.status_code == 200
    assert published.json()["data"]["status"] == "published"

    again = await client.post(f"/api/v1/rides/{ride['id']}/publish", headers=driver_headers)
    assert again.status_code == 409
    assert again.json()["message"] == "Ride is already published"

    unpublished = await client.post(f"/api/v1/rides/{ride['id']}/unpublish", headers=driver_headers)
    assert unpublished.status_code == 200
    assert unpublished.json()["data"]["status"] == "draft"

    again = await client.post(f"/api/v1/rides/{ride['id']}/unpublish", headers=driver_headers)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_publish_requires_owner(client: AsyncClient, create_ride, rider_headers):
    ride = await create_ride(publish=False)
    response = await client.post(f"/api/v1/rides/{ride['id']}/publish", headers=rider_headers)
    assert response.status_code == 403
    assert response.json()["message"] == "Not authorized to modify this ride"


@pytest.mark.asyncio
async def test_unpublished_ride_refuses_bookings(client: AsyncClient, published_ride, book, driver_headers):
    await client.post(f"/api/v1/rides/{published_ride['id']}/unpublish", headers=driver_headers)
    response = await book(published_ride["id"], uuid.uuid4())
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delete_ride_cascades_to_bookings(
    client: AsyncClient, session_factory, published_ride, book, driver_headers
):
    for _ in range(2):
        assert (await book(published_ride["id"], uuid.uuid4())).status_code == 201

    response = await client.delete(f"/api/v1/rides/{published_ride['id']}", headers=driver_headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Ride cancelled successfully"
    assert response.json()["data"]["status"] == "cancelled"
    assert response.json()["data"]["available_seats"] == 4

    async with session_factory() as session:
        statuses = (
            await session.execute(
                select(Booking.status).where(Booking.ride_id == uuid.UUID(published_ride["id"]))
            )
        ).scalars().all()
    assert statuses == ["cancelled", "cancelled"]

    # Soft delete: the ride is still readable
    assert (await client.get(f"/api/v1/rides/{published_ride['id']}")).status_code == 200

    again = await client.delete(f"/api/v1/rides/{published_ride['id']}", headers=driver_headers)
    assert again.status_code == 409

    assert (await book(published_ride["id"], uuid.uuid4())).status_code == 409


@pytest.mark.asyncio
async def test_delete_ride_requires_owner(client: AsyncClient, published_ride, rider_headers):
    response = await client.delete(f"/api/v1/rides/{published_ride['id']}", headers=rider_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_ride_fields(client: AsyncClient, published_ride, driver_headers):
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}",
        json={"pricePerSeat": "12.00", "womenOnly": True, "luggageAllowed": False},
        headers=driver_headers,
    )
    assert response.status_code == 200, response.text
    ride = response.json()["data"]
    assert Decimal(str(ride["price_per_seat"])) == Decimal("12.00")
    assert ride["women_only"] is True
    assert ride["luggage_allowed"] is False
    # Route untouched
    assert route(ride) == route(published_ride)


@pytest.mark.asyncio
async def test_update_ride_price_applies_to_new_bookings(client: AsyncClient, published_ride, book, driver_headers):
    await client.put(f"/api/v1/rides/{published_ride['id']}", json={"pricePerSeat": "15.00"}, headers=driver_headers)
    response = await book(published_ride["id"], uuid.uuid4(), seats=2)
    assert Decimal(str(response.json()["data"]["booking"]["total_amount"])) == Decimal("30.00")


@pytest.mark.asyncio
async def test_update_ride_non_owner(client: AsyncClient, published_ride, rider_headers):
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}", json={"pricePerSeat": "1.00"}, headers=rider_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_ride_empty_patch(client: AsyncClient, published_ride, driver_headers):
    response = await client.put(f"/api/v1/rides/{published_ride['id']}", json={}, headers=driver_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "No valid fields to update"


@pytest.mark.asyncio
async def test_update_ride_past_departure(client: AsyncClient, published_ride, driver_headers):
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}",
        json={"departureDateTime": (utcnow() - timedelta(days=1)).isoformat()},
        headers=driver_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_total_seats_with_bookings(client: AsyncClient, published_ride, book, driver_headers):
    await book(published_ride["id"], uuid.uuid4(), seats=1)
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}", json={"totalSeats": 6}, headers=driver_headers
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_update_total_seats_without_bookings(client: AsyncClient, published_ride, driver_headers):
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}", json={"totalSeats": 6}, headers=driver_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["total_seats"] == 6
    assert response.json()["data"]["available_seats"] == 6


@pytest.mark.asyncio
async def test_update_route_replaces_waypoints(client: AsyncClient, published_ride, driver_headers):
    """A route change leaves exactly one pickup and one drop."""
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}",
        json={
            "pickupLocation": {"address": "Berlin Südkreuz", "latitude": 52.4754, "longitude": 13.3655},
            "stopOvers": [{"address": "Ludwigslust", "latitude": 53.3296, "longitude": 11.4973}],
        },
        headers=driver_headers,
    )
    assert response.status_code == 200, response.text
    ride = response.json()["data"]
    assert route(ride) == [
        ("pickup", "Berlin Südkreuz", 0),
        ("stopover", "Ludwigslust", 1),
        ("drop", "Hamburg Hbf", 2),
    ]
    assert Decimal(str(ride["distance"])) == Decimal("289.40")

    # Replace again, dropping the stopover
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}",
        json={"stopOvers": [], "dropLocation": {"address": "Hamburg Dammtor", "latitude": 53.5606, "longitude": 9.9898}},
        headers=driver_headers,
    )
    assert route(response.json()["data"]) == [("pickup", "Berlin Südkreuz", 0), ("drop", "Hamburg Dammtor", 1)]

    fetched = (await client.get(f"/api/v1/rides/{published_ride['id']}")).json()["data"]
    assert [loc["location_type"] for loc in fetched["locations"]] == ["pickup", "drop"]


@pytest.mark.asyncio
async def test_update_route_with_bookings(client: AsyncClient, published_ride, book, driver_headers):
    await book(published_ride["id"], uuid.uuid4())
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}",
        json={"dropLocation": {"address": "Lübeck", "latitude": 53.8655, "longitude": 10.6866}},
        headers=driver_headers,
    )
    assert response.status_code == 409
    assert response.json()["message"] == "Cannot change the route while the ride has active bookings"

    # Nothing changed
    fetched = (await client.get(f"/api/v1/rides/{published_ride['id']}")).json()["data"]
    assert route(fetched) == route(published_ride)


@pytest.mark.asyncio
async def test_modification_cutoff_with_confirmed_booking(
    client: AsyncClient, create_ride, book, rider_id, driver_headers
):
    """Within the cutoff window a confirmed booking freezes the ride."""
    ride = await create_ride(departureDateTime=(utcnow() + timedelta(hours=1)).isoformat())
    booking_id = (await book(ride["id"], rider_id)).json()["data"]["booking"]["id"]

    # Pending bookings do not freeze it
    allowed = await client.put(f"/api/v1/rides/{ride['id']}", json={"womenOnly": True}, headers=driver_headers)
    assert allowed.status_code == 200

    await client.put(f"/api/v1/bookings/{booking_id}/confirm", headers=driver_headers)
    refused = await client.put(f"/api/v1/rides/{ride['id']}", json={"womenOnly": False}, headers=driver_headers)
    assert refused.status_code == 409
    assert "confirmed bookings" in refused.json()["message"]

    assert (await client.delete(f"/api/v1/rides/{ride['id']}", headers=driver_headers)).status_code == 409


@pytest.mark.asyncio
async def test_started_ride_cannot_be_modified(client: AsyncClient, session_factory, published_ride, driver_headers):
    async with session_factory() as session:
        await session.execute(
            update(Ride)
            .where(Ride.id == uuid.UUID(published_ride["id"]))
            .values(departure_datetime=utcnow() - timedelta(minutes=5))
        )
        await session.commit()

    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}", json={"womenOnly": True}, headers=driver_headers
    )
    assert response.status_code == 409
    assert response.json()["message"] == "Ride has already started"


@pytest.mark.asyncio
async def test_ride_status_transitions(client: AsyncClient, published_ride, driver_headers):
    ride_id = published_ride["id"]

    started = await client.put(f"/api/v1/rides/{ride_id}/status", json={"status": "in_progress"}, headers=driver_headers)
    assert started.status_code == 200
    assert started.json()["data"]["status"] == "in_progress"

    # In progress rides are locked for edits and cancellation
    edit = await client.put(f"/api/v1/rides/{ride_id}", json={"womenOnly": True}, headers=driver_headers)
    assert edit.status_code == 409
    assert (await client.delete(f"/api/v1/rides/{ride_id}", headers=driver_headers)).status_code == 409

    back = await client.put(f"/api/v1/rides/{ride_id}/status", json={"status": "published"}, headers=driver_headers)
    assert back.status_code == 409

    completed = await client.post(f"/api/v1/rides/{ride_id}/complete", headers=driver_headers)
    assert completed.status_code == 200
    assert completed.json()["data"]["status"] == "completed"

    again = await client.post(f"/api/v1/rides/{ride_id}/complete", headers=driver_headers)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_ride_status_invalid_transition(client: AsyncClient, create_ride, driver_headers):
    ride = await create_ride(publish=False)
    response = await client.put(f"/api/v1/rides/{ride['id']}/status", json={"status": "completed"}, headers=driver_headers)
    assert response.status_code == 409
    assert response.json()["message"] == "Cannot change ride status from draft to completed"

    bad = await client.put(f"/api/v1/rides/{ride['id']}/status", json={"status": "flying"}, headers=driver_headers)
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_ride_status_cancel_cascades(client: AsyncClient, published_ride, book, driver_headers):
    booking_id = (await book(published_ride["id"], uuid.uuid4())).json()["data"]["booking"]["id"]

    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}/status", json={"status": "cancelled"}, headers=driver_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"

    booking = await client.get(f"/api/v1/bookings/{booking_id}", headers=driver_headers)
    assert booking.json()["data"]["booking"]["status"] == "cancelled"


@pytest.mark.asyncio
async def test_ride_status_requires_owner(client: AsyncClient, published_ride, rider_headers):
    response = await client.put(
        f"/api/v1/rides/{published_ride['id']}/status", json={"status": "in_progress"}, headers=rider_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_available_seats(client: AsyncClient, published_ride, book):
    await book(published_ride["id"], uuid.uuid4(), seats=3)

    response = await client.get(f"/api/v1/rides/{published_ride['id']}/available-seats")
    assert response.status_code == 200
    assert response.json()["data"] == {
        "ride_id": published_ride["id"],
        "total_seats": 4,
        "booked_seats": 3,
        "available_seats": 1,
    }

    missing = await client.get(f"/api/v1/rides/{uuid.uuid4()}/available-seats")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_list_my_rides(client: AsyncClient, create_ride, driver_headers):
    await create_ride(publish=False)
    await create_ride()
    await create_ride(headers=headers_for(uuid.uuid4()))

    response = await client.get("/api/v1/rides/my-rides", headers=driver_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["pagination"]["total"] == 2
    assert all(len(ride["locations"]) == 2 for ride in data["rides"])

    drafts = await client.get("/api/v1/rides/my-rides?status=draft", headers=driver_headers)
    assert [r["status"] for r in drafts.json()["data"]["rides"]] == ["draft"]

    assert (await client.get("/api/v1/rides/my-rides")).status_code == 401


@pytest.mark.asyncio
async def test_search_only_published_future_rides(client: AsyncClient, create_ride):
    published = await create_ride()
    await create_ride(publish=False)

    response = await client.get("/api/v1/rides/search")
    assert response.status_code == 200
    data = response.json()["data"]
    assert [ride["id"] for ride in data["rides"]] == [published["id"]]
    assert data["rides"][0]["available_seats"] == 4
    assert data["pagination"] == {"page": 1, "limit": 20, "total": 1, "total_pages": 1}


@pytest.mark.asyncio
async def test_search_by_passengers(client: AsyncClient, create_ride, book):
    full_ish = await create_ride()
    roomy = await create_ride()
    await book(full_ish["id"], uuid.uuid4(), seats=3)

    response = await client.get("/api/v1/rides/search?passengers=2")
    assert [ride["id"] for ride in response.json()["data"]["rides"]] == [roomy["id"]]

    response = await client.get("/api/v1/rides/search?passengers=1")
    seats = {ride["id"]: ride["available_seats"] for ride in response.json()["data"]["rides"]}
    assert seats == {full_ish["id"]: 1, roomy["id"]: 4}


@pytest.mark.asyncio
async def test_search_filters(client: AsyncClient, create_ride):
    cheap = await create_ride(pricePerSeat="8.00", womenOnly=True)
    await create_ride(pricePerSeat="25.00", driverVerified=True)
    leipzig = await create_ride(
        pricePerSeat="15.00",
        pickupLocation={"address": "Leipzig Hbf", "latitude": 51.3455, "longitude": 12.3821},
    )

    by_price = await client.get("/api/v1/rides/search?maxPrice=15")
    assert {r["id"] for r in by_price.json()["data"]["rides"]} == {cheap["id"], leipzig["id"]}

    women = await client.get("/api/v1/rides/search?womenOnly=true")
    assert [r["id"] for r in women.json()["data"]["rides"]] == [cheap["id"]]

    verified = await client.get("/api/v1/rides/search?driverVerified=true")
    assert [Decimal(str(r["price_per_seat"])) for r in verified.json()["data"]["rides"]] == [Decimal("25.00")]

    pickup = await client.get("/api/v1/rides/search?pickupLocation=leipzig")
    assert [r["id"] for r in pickup.json()["data"]["rides"]] == [leipzig["id"]]

    drop = await client.get("/api/v1/rides/search?dropLocation=hamburg")
    assert drop.json()["data"]["pagination"]["total"] == 3


@pytest.mark.asyncio
async def test_search_by_departure_date(client: AsyncClient, create_ride):
    departure = future(days=5)
    on_day = await create_ride(departureDateTime=departure.isoformat())
    await create_ride(departureDateTime=(departure + timedelta(days=2)).isoformat())

    response = await client.get(f"/api/v1/rides/search?departureDate={departure.date().isoformat()}")
    assert [r["id"] for r in response.json()["data"]["rides"]] == [on_day["id"]]


@pytest.mark.asyncio
async def test_search_sorting_and_paging(client: AsyncClient, create_ride):
    for price in ("20.00", "5.00", "12.00"):
        await create_ride(pricePerSeat=price)

    response = await client.get("/api/v1/rides/search?sortBy=price&sortOrder=desc")
    prices = [Decimal(str(r["price_per_seat"])) for r in response.json()["data"]["rides"]]
    assert prices == [Decimal("20.00"), Decimal("12.00"), Decimal("5.00")]

    page = await client.get("/api/v1/rides/search?sortBy=price&page=2&limit=2")
    data = page.json()["data"]
    assert [Decimal(str(r["price_per_seat"])) for r in data["rides"]] == [Decimal("20.00")]
    assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "total_pages": 2}


@pytest.mark.asyncio
async def test_search_rejects_bad_parameters(client: AsyncClient):
    assert (await client.get("/api/v1/rides/search?sortBy=rating")).status_code == 400
    assert (await client.get("/api/v1/rides/search?passengers=0")).status_code == 400
    assert (await client.get("/api/v1/rides/search?limit=1000")).status_code == 400
