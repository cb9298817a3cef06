"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Check-in metrics
checkin_attempts = Counter(
    'checkin_attempts_total',
    'Total check-in attempts',
    ['outcome']  # arrived, already_arrived, not_found, cancelled, undone
)

checkin_latency = Histogram(
    'checkin_latency_seconds',
    'Check-in request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Registration metrics
registration_attempts = Counter(
    'registration_attempts_total',
    'Total registration intents',
    ['outcome']  # created, capacity_exceeded, duplicate_phone, cancelled
)

capacity_retries = Counter(
    'capacity_conflicts_total',
    'Registration intents rejected by the conditional capacity update'
)

# OTP metrics
otp_sends = Counter(
    'otp_sends_total',
    'OTP send requests',
    ['outcome']  # sent, rate_limited, not_configured, failed
)

otp_verifies = Counter(
    'otp_verifies_total',
    'OTP verify requests',
    ['outcome']  # verified, invalid_code, expired, blocked, no_code
)

otp_cas_retries = Counter(
    'otp_cas_retries_total',
    'OTP challenge compare-and-swap retries due to concurrent verifies'
)

access_link_sends = Counter(
    'access_link_sends_total',
    'Access link (QR page) deliveries',
    ['trigger', 'outcome']  # verified/resend, sent/failed/skipped
)

# Rate limiting
rate_limit_rejections = Counter(
    'rate_limit_rejections_total',
    'Requests rejected by the rate limiter',
    ['scope']
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
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


def record_checkin(outcome: str):
    checkin_attempts.labels(outcome=outcome).inc()


def record_registration(outcome: str):
    registration_attempts.labels(outcome=outcome).inc()


def record_otp_send(outcome: str):
    otp_sends.labels(outcome=outcome).inc()


def record_otp_verify(outcome: str):
    otp_verifies.labels(outcome=outcome).inc()


def record_access_link(trigger: str, outcome: str):
    access_link_sends.labels(trigger=trigger, outcome=outcome).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
