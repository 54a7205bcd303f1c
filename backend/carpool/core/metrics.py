"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'carpool_booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, conflict, error
)

booking_latency = Histogram(
    'carpool_booking_latency_seconds',
    'Seat reservation latency (read, compare-and-swap, insert)',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

booking_transitions = Counter(
    'carpool_booking_transitions_total',
    'Booking status transitions',
    ['action', 'result']  # cancel/confirm/complete, ok/rejected
)

# Database metrics
reservation_retries = Counter(
    'carpool_reservation_retries_total',
    'Seat reservation retries due to ride version conflicts'
)

# Ride metrics
ride_events = Counter(
    'carpool_ride_events_total',
    'Ride lifecycle events',
    ['event']  # created, updated, published, unpublished, cancelled, status_changed
)

# Mapping service / cache metrics
location_lookups = Counter(
    'carpool_location_lookups_total',
    'Distance lookups against the mapping service',
    ['result']  # ok, error, timeout, fallback
)

cache_operations = Counter(
    'carpool_cache_operations_total',
    'Route cache operations',
    ['operation', 'result']  # get/set, hit/miss/error
)


def metrics_endpoint() -> Response:
    """Prometheus scrape endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, conflict, error"""
    booking_attempts.labels(status=status).inc()


def record_booking_transition(action: str, ok: bool):
    booking_transitions.labels(action=action, result="ok" if ok else "rejected").inc()


def record_ride_event(event: str):
    ride_events.labels(event=event).inc()


def record_location_lookup(result: str):
    location_lookups.labels(result=result).inc()


def record_cache_operation(operation: str, result: str):
    """Record cache operation. Result: hit, miss, error"""
    cache_operations.labels(operation=operation, result=result).inc()
