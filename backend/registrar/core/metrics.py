"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Ticketing backend metrics
ticketing_requests = Counter(
    'ticketing_requests_total',
    'Requests sent to the ticketing backend',
    ['operation', 'outcome']  # outcome: ok or an error code
)

ticketing_latency = Histogram(
    'ticketing_request_latency_seconds',
    'Ticketing backend request latency',
    ['operation'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

cache_operations = Counter(
    'ticketing_cache_operations_total',
    'Ticketing cache lookups',
    ['result']  # hit, miss
)

# Registration metrics
registration_attempts = Counter(
    'registration_attempts_total',
    'Registration attempts made by the retry orchestrator',
    ['result', 'error_code']
)

retry_terminal_transitions = Counter(
    'registration_retry_terminal_total',
    'Retry records reaching a terminal state',
    ['status']  # success, failed, abandoned
)

orphan_reconciliations = Counter(
    'registration_orphan_reconciliations_total',
    'Late successes against terminal retry records',
    ['outcome']  # cancelled, failed
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


def record_ticketing_request(operation: str, outcome: str, duration_seconds: float):
    ticketing_requests.labels(operation=operation, outcome=outcome).inc()
    ticketing_latency.labels(operation=operation).observe(duration_seconds)


def record_cache_lookup(hit: bool):
    cache_operations.labels(result="hit" if hit else "miss").inc()


def record_registration_attempt(success: bool, error_code: str = ""):
    result = "success" if success else "failure"
    registration_attempts.labels(result=result, error_code=error_code).inc()


def record_terminal_transition(status: str):
    retry_terminal_transitions.labels(status=status).inc()


def record_reconciliation(cancelled: bool):
    orphan_reconciliations.labels(outcome="cancelled" if cancelled else "failed").inc()
