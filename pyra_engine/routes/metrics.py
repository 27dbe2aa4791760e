"""
Prometheus metrics endpoint.

Exposes engine metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Event Metrics
# ============================================

events_dispatched = Counter(
    'events_dispatched_total',
    'Total domain events dispatched',
    ['event_type']
)

event_consumer_errors = Counter(
    'event_consumer_errors_total',
    'Total consumer failures while processing an event',
    ['consumer']
)

# ============================================
# Automation Metrics
# ============================================

rule_executions = Counter(
    'automation_rule_executions_total',
    'Total rule firings by outcome',
    ['status']
)

action_executions = Counter(
    'automation_action_executions_total',
    'Total actions executed by type and outcome',
    ['action_type', 'outcome']
)

# ============================================
# Webhook Metrics
# ============================================

webhook_attempts = Counter(
    'webhook_delivery_attempts_total',
    'Total webhook delivery attempts by outcome',
    ['outcome']
)

webhook_attempt_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Webhook delivery attempt duration in seconds',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

webhooks_failed = Counter(
    'webhooks_failed_total',
    'Total deliveries that reached the failed state'
)

webhook_retries_swept = Counter(
    'webhook_retries_swept_total',
    'Total due deliveries claimed by the retry sweep'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_event_dispatched(event_type: str):
    """Record an event handed to the dispatcher."""
    events_dispatched.labels(event_type=event_type).inc()


def track_consumer_error(consumer: str):
    """Record a consumer (rules or webhooks) failing on an event."""
    event_consumer_errors.labels(consumer=consumer).inc()


def track_rule_execution(status: str):
    """Record a rule firing."""
    rule_executions.labels(status=status).inc()


def track_action(action_type: str, success: bool):
    """Record one action's outcome."""
    action_executions.labels(
        action_type=action_type,
        outcome="success" if success else "failure"
    ).inc()


def track_webhook_attempt(success: bool, duration_seconds: float):
    """Record a webhook delivery attempt."""
    webhook_attempts.labels(outcome="success" if success else "failure").inc()
    webhook_attempt_duration.observe(duration_seconds)


def track_webhook_failed():
    """Record a delivery reaching the failed state."""
    webhooks_failed.inc()


def track_retries_swept(count: int):
    """Record deliveries claimed by a retry sweep."""
    webhook_retries_swept.inc(count)


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
