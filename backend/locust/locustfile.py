"""
Locust Load Test Suite

Tokens are minted locally with the API's SECRET_KEY (the API only
verifies bearer tokens), so run with the same environment as the server.

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test overbooking
  locust -f locustfile.py --tags throughput   # Test search / seat reads
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
import uuid
from datetime import datetime, timedelta, timezone

from locust import HttpUser, between, tag, task

from carpool.core.security import create_access_token

# Shared state
RIDE_IDS = []
CONCURRENCY_RIDE_ID = None
CONCURRENCY_SEATS = 4

CITIES = [
    ("Berlin Hbf", 52.5251, 13.3694),
    ("Hamburg Hbf", 53.5530, 10.0069),
    ("Leipzig Hbf", 51.3455, 12.3821),
    ("Dresden Hbf", 51.0405, 13.7320),
]


def auth_headers(user_id=None):
    token = create_access_token({"sub": str(user_id or uuid.uuid4())}, expires_delta=timedelta(hours=2))
    return {"Authorization": f"Bearer {token}"}


def ride_payload(total_seats):
    (pickup, p_lat, p_lng), (drop, d_lat, d_lng) = random.sample(CITIES, 2)
    departure = datetime.now(timezone.utc) + timedelta(days=random.randint(1, 30))
    return {
        "totalSeats": total_seats,
        "pricePerSeat": f"{random.randint(5, 40)}.00",
        "departureDateTime": departure.isoformat(),
        "pickupLocation": {"address": pickup, "latitude": p_lat, "longitude": p_lng},
        "dropLocation": {"address": drop, "latitude": d_lat, "longitude": d_lng},
    }


def post_and_publish(client, headers, total_seats):
    resp = client.post("/api/v1/rides", json=ride_payload(total_seats), headers=headers, name="/api/v1/rides")
    if resp.status_code != 201:
        return None
    ride_id = resp.json()["data"]["id"]
    client.post(f"/api/v1/rides/{ride_id}/publish", headers=headers, name="/api/v1/rides/{id}/publish")
    return ride_id


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 riders -> 4 seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT SUM(booked_seats) FROM bookings
      WHERE ride_id = X AND status <> 'cancelled';
    Should be <= 4
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        # Every simulated user is a distinct rider
        self.headers = auth_headers()

        if not CONCURRENCY_RIDE_ID:
            ride_id = post_and_publish(self.client, auth_headers(), CONCURRENCY_SEATS)
            if ride_id:
                globals()["CONCURRENCY_RIDE_ID"] = ride_id
                print(f"\n✓ Published ride {ride_id} with {CONCURRENCY_SEATS} seats\n")

    @tag("concurrency")
    @task
    def book_limited_seats(self):
        """All riders fight for the same seats."""
        if not CONCURRENCY_RIDE_ID:
            return

        with self.client.post("/api/v1/bookings",
            json={"rideId": CONCURRENCY_RIDE_ID, "bookedSeats": 1},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: sold out, or already booked by this rider
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - public reads

    Run: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def search_rides(self):
        resp = self.client.get(
            f"/api/v1/rides/search?page={random.randint(1, 3)}&limit=20&passengers={random.randint(1, 3)}",
            name="/api/v1/rides/search",
        )
        if resp.status_code == 200:
            for ride in resp.json()["data"]["rides"]:
                if ride["id"] not in RIDE_IDS:
                    RIDE_IDS.append(ride["id"])

    @tag("throughput", "read")
    @task(3)
    def available_seats(self):
        if RIDE_IDS:
            self.client.get(f"/api/v1/rides/{random.choice(RIDE_IDS)}/available-seats",
                name="/api/v1/rides/{id}/available-seats")

    @tag("throughput")
    @task(1)
    def health_check(self):
        """Monitor system health."""
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers()

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_ride(self):
        with self.client.post("/api/v1/bookings",
            json={"rideId": str(uuid.uuid4()), "bookedSeats": 1},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def zero_seats(self):
        with self.client.post("/api/v1/bookings",
            json={"rideId": str(uuid.uuid4()), "bookedSeats": 0},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def too_many_seats(self):
        with self.client.post("/api/v1/bookings",
            json={"rideId": str(uuid.uuid4()), "bookedSeats": 11},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def past_departure(self):
        payload = ride_payload(3)
        payload["departureDateTime"] = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        with self.client.post("/api/v1/rides", json=payload, headers=self.headers, catch_response=True) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/bookings",
            json={"rideId": str(uuid.uuid4()), "bookedSeats": 1},
            catch_response=True
        ) as resp:
            self._expect(resp, [401])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly searching (70%)
      - Some bookings and cancellations (25%)
      - Rare ride posts (5%)
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = auth_headers()
        self.booking_ids = []

    @task(50)
    def search(self):
        resp = self.client.get("/api/v1/rides/search?page=1&limit=20", name="/api/v1/rides/search")
        if resp.status_code == 200:
            for ride in resp.json()["data"]["rides"]:
                if ride["id"] not in RIDE_IDS:
                    RIDE_IDS.append(ride["id"])

    @task(20)
    def view_ride(self):
        if RIDE_IDS:
            self.client.get(f"/api/v1/rides/{random.choice(RIDE_IDS)}", name="/api/v1/rides/{id}")

    @task(10)
    def book_seats(self):
        if RIDE_IDS:
            resp = self.client.post("/api/v1/bookings",
                json={"rideId": random.choice(RIDE_IDS), "bookedSeats": random.randint(1, 2)},
                headers=self.headers)
            if resp.status_code == 201:
                self.booking_ids.append(resp.json()["data"]["booking"]["id"])

    @task(5)
    def cancel_booking(self):
        if self.booking_ids:
            booking_id = self.booking_ids.pop()
            self.client.put(f"/api/v1/bookings/{booking_id}/cancel", headers=self.headers,
                name="/api/v1/bookings/{id}/cancel")

    @task(3)
    def post_ride(self):
        ride_id = post_and_publish(self.client, self.headers, random.randint(2, 6))
        if ride_id:
            RIDE_IDS.append(ride_id)
