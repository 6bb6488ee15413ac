"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Join request metrics
join_request_attempts = Counter(
    'join_request_attempts_total',
    'Total join request creation attempts',
    ['result']  # created, conflict, rejected, error
)

join_request_transitions = Counter(
    'join_request_transitions_total',
    'Join request status transitions',
    ['status']  # approved, declined, waitlisted, cancelled, expired
)

capacity_conflicts = Counter(
    'capacity_conflicts_total',
    'Operations rejected because the event had no room',
    ['operation']  # create, approve, promote
)

transition_latency = Histogram(
    'join_request_transition_latency_seconds',
    'Latency of locked repository transitions',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Sweeper and promoter metrics
holds_expired = Counter(
    'join_request_holds_expired_total',
    'Pending holds converted to expired by the sweeper'
)

hold_expiry_failures = Counter(
    'join_request_hold_expiry_failures_total',
    'Stale holds the sweeper failed to expire and left for the next run'
)

sweep_runs = Counter(
    'hold_sweep_runs_total',
    'Hold sweeper iterations',
    ['result']  # ok, error
)

sweep_latency = Histogram(
    'hold_sweep_latency_seconds',
    'Duration of one hold sweep',
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

waitlist_promotions = Counter(
    'waitlist_promotions_total',
    'Waitlisted requests promoted to approved'
)

# Database metrics
db_retries = Counter(
    'db_read_retry_attempts_total',
    'Read retries caused by transient storage errors'
)

# Notification metrics
notifications_sent = Counter(
    'notifications_total',
    'Notification dispatch outcomes',
    ['event_type', 'result']  # sent, failed
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


def record_join_attempt(result: str):
    """Record join request creation. Result: created, conflict, rejected, error"""
    join_request_attempts.labels(result=result).inc()


def record_transition(status: str):
    join_request_transitions.labels(status=status).inc()


def record_capacity_conflict(operation: str):
    capacity_conflicts.labels(operation=operation).inc()


def record_notification(event_type: str, sent: bool):
    result = "sent" if sent else "failed"
    notifications_sent.labels(event_type=event_type, result=result).inc()
