"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # pending, confirmed, capacity_exceeded, rejected
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

booking_expirations = Counter(
    'booking_expirations_total',
    'Pending bookings cancelled by the expiry sweep'
)

# Ledger metrics
ledger_operations = Counter(
    'ledger_operations_total',
    'Inventory ledger operations',
    ['operation', 'result']  # reserve/release/finalize, ok/conflict/noop
)

# Receipt metrics
receipt_resolutions = Counter(
    'receipt_resolutions_total',
    'Payment receipt resolutions',
    ['outcome']  # submitted, confirmed, rejected
)

# Notification metrics
notifications_published = Counter(
    'notifications_published_total',
    'Notifications persisted by the dispatcher',
    ['type']
)

notification_failures = Counter(
    'notification_publish_failures_total',
    'Notifications that could not be persisted'
)

live_deliveries = Counter(
    'live_deliveries_total',
    'Live channel deliveries',
    ['result']  # queued, dropped, no_channel
)

active_channels = Gauge(
    'active_notification_channels',
    'Open real-time notification channels'
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_booking_attempt(status: str):
    """Record booking attempt. Status: pending, confirmed, capacity_exceeded, rejected"""
    booking_attempts.labels(status=status).inc()


def record_ledger_operation(operation: str, result: str):
    ledger_operations.labels(operation=operation, result=result).inc()


def record_receipt_resolution(outcome: str):
    receipt_resolutions.labels(outcome=outcome).inc()


def record_notification(notification_type: str):
    notifications_published.labels(type=notification_type).inc()


def record_live_delivery(result: str):
    """Record live delivery outcome. Result: queued, dropped, no_channel"""
    live_deliveries.labels(result=result).inc()
