"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # created, insufficient_inventory, rejected
)

booking_cancellations = Counter(
    'booking_cancellations_total',
    'Bookings cancelled',
    ['source']  # user, callback
)

# Inventory metrics
inventory_operations = Counter(
    'inventory_operations_total',
    'Inventory ledger operations',
    ['operation', 'result']  # reserve/release, ok/insufficient
)

# Payment metrics
payment_initiations = Counter(
    'payment_initiations_total',
    'STK push initiation attempts',
    ['result']  # initiated, gateway_error, rejected
)

gateway_latency = Histogram(
    'mpesa_gateway_latency_seconds',
    'Latency of calls to the M-Pesa API',
    ['endpoint'],  # token, stkpush
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

http_request_latency = Histogram(
    'http_request_duration_seconds',
    'API request latency',
    ['method', 'route', 'status_class'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 30.0]
)

callbacks_received = Counter(
    'mpesa_callbacks_total',
    'M-Pesa callbacks by reconciliation outcome',
    ['outcome']  # confirmed, failed, unmatched, duplicate, malformed, error
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_booking_attempt(status: str):
    """Record booking attempt. Status: created, insufficient_inventory, rejected"""
    booking_attempts.labels(status=status).inc()

def record_cancellation(source: str):
    booking_cancellations.labels(source=source).inc()

def record_inventory_operation(operation: str, ok: bool):
    result = "ok" if ok else "insufficient"
    inventory_operations.labels(operation=operation, result=result).inc()

def record_payment_initiation(result: str):
    payment_initiations.labels(result=result).inc()

def record_callback(outcome: str):
    callbacks_received.labels(outcome=outcome).inc()

def record_request(method: str, route: str, status_code: int, seconds: float):
    http_request_latency.labels(
        method=method, route=route, status_class=f"{status_code // 100}xx"
    ).observe(seconds)
