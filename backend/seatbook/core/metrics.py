"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# HTTP metrics
http_request_latency = Histogram(
    'http_request_duration_seconds',
    'Request latency by route template and status',
    ['method', 'route', 'status'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Hold metrics
hold_attempts = Counter(
    'seat_hold_attempts_total',
    'Total seat hold requests',
    ['result']  # granted, unavailable, contended, error
)

hold_releases = Counter(
    'seat_hold_releases_total',
    'Seat holds released explicitly',
)

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking commit attempts',
    ['result']  # confirmed, seat_unavailable, seat_contended, payment_failed, error
)

booking_latency = Histogram(
    'booking_commit_latency_seconds',
    'Booking commit latency, including the payment round-trip',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

compensations = Counter(
    'booking_compensations_total',
    'Compensating transactions executed',
    ['reason']
)

# Payment metrics
payment_outcomes = Counter(
    'payment_outcomes_total',
    'Payment attempts by method and outcome',
    ['method', 'result']  # completed, failed, refunded
)

# Recovery metrics
stale_holds_recovered = Counter(
    'stale_holds_recovered_total',
    'Reserved seats reset after their hold expired or vanished',
)

pending_bookings_recovered = Counter(
    'pending_bookings_recovered_total',
    'Pending bookings cancelled by the recovery sweep',
)

# Ledger metrics
ledger_errors = Counter(
    'reservation_ledger_errors_total',
    'Reservation ledger (Redis) errors',
)

ledger_unavailable = Gauge(
    'reservation_ledger_unavailable',
    'Reservation ledger state (1=unreachable, 0=healthy)'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_hold_attempt(result: str):
    """Record hold attempt. Result: granted, unavailable, contended, error"""
    hold_attempts.labels(result=result).inc()


def record_booking_attempt(result: str):
    """Record booking commit outcome."""
    booking_attempts.labels(result=result).inc()


def record_payment(method: str, result: str):
    payment_outcomes.labels(method=method, result=result).inc()


def record_compensation(reason: str):
    compensations.labels(reason=reason).inc()
