"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Lifecycle metrics
lifecycle_transitions = Counter(
    "sems_lifecycle_transitions_total",
    "Lifecycle transitions committed",
    ["action"],  # SUBMIT_FOR_APPROVAL, APPROVE, ..., AUTO_RESET
)

validation_failures = Counter(
    "sems_validation_failures_total",
    "Requests rejected by structural validation",
    ["operation"],  # create, update, delete, availability
)

business_rule_violations = Counter(
    "sems_business_rule_violations_total",
    "Requests rejected by a business rule",
    ["code"],
)

# Venue availability metrics
availability_checks = Counter(
    "sems_availability_checks_total",
    "Venue availability checks",
    ["outcome"],  # all_available, some_conflicts, none_available
)

availability_latency = Histogram(
    "sems_availability_check_latency_seconds",
    "Time spent answering a venue availability check",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1],
)

# Cache metrics
cache_operations = Counter(
    "sems_cache_operations_total",
    "Cache operations",
    ["operation", "result"],  # get/set/invalidate, hit/miss/ok/error
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def record_transition(action: str) -> None:
    lifecycle_transitions.labels(action=action).inc()


def record_validation_failure(operation: str) -> None:
    validation_failures.labels(operation=operation).inc()


def record_business_rule_violation(code: str) -> None:
    business_rule_violations.labels(code=code).inc()


def record_availability_check(available: int, total: int, duration: float) -> None:
    """Record the outcome of one availability check."""
    if total and available == total:
        outcome = "all_available"
    elif available == 0:
        outcome = "none_available"
    else:
        outcome = "some_conflicts"
    availability_checks.labels(outcome=outcome).inc()
    availability_latency.observe(duration)


def record_cache_operation(operation: str, result: str) -> None:
    cache_operations.labels(operation=operation, result=result).inc()
