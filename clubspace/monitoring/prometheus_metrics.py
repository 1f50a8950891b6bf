# clubspace/monitoring/prometheus_metrics.py
"""
Prometheus metrics module for the ClubSpace messaging client.

Service timings come from the ``@measure_operation`` decorator; realtime and
read-receipt counters are recorded by the router and tracker directly.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry to avoid conflicts with default process metrics
REGISTRY = CollectorRegistry()

http_request_duration_seconds = Histogram(
    "clubspace_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_total = Counter(
    "clubspace_http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

service_operation_duration_seconds = Histogram(
    "clubspace_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "clubspace_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "clubspace_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

realtime_events_total = Counter(
    "clubspace_realtime_events_total",
    "Change events seen by the realtime router",
    ["table", "outcome"],  # applied | duplicate | filtered | failed
    registry=REGISTRY,
)

realtime_subscriptions_active = Gauge(
    "clubspace_realtime_subscriptions_active",
    "Realtime subscriptions currently open",
    registry=REGISTRY,
)

realtime_resubscribes_total = Counter(
    "clubspace_realtime_resubscribes_total",
    "Realtime resubscribe attempts after feed errors",
    registry=REGISTRY,
)

mark_read_attempts_total = Counter(
    "clubspace_mark_read_attempts_total",
    "Background mark-read attempts",
    ["status"],  # success | retry | failed
    registry=REGISTRY,
)

optimistic_mutations_total = Counter(
    "clubspace_optimistic_mutations_total",
    "Optimistic mutations by kind and final state",
    ["kind", "state"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, duration: float, status_code: int) -> None:
        labels = {"method": method, "endpoint": endpoint, "status_code": str(status_code)}
        http_request_duration_seconds.labels(**labels).observe(duration)
        http_requests_total.labels(**labels).inc()

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'ConversationReconciler')
            operation: Operation/method name (e.g., 'send_message')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_realtime_event(table: str, outcome: str) -> None:
        realtime_events_total.labels(table=table, outcome=outcome).inc()

    @staticmethod
    def set_active_subscriptions(count: int) -> None:
        realtime_subscriptions_active.set(count)

    @staticmethod
    def record_resubscribe() -> None:
        realtime_resubscribes_total.inc()

    @staticmethod
    def record_mark_read_attempt(status: str) -> None:
        mark_read_attempts_total.labels(status=status).inc()

    @staticmethod
    def record_mutation(kind: str, state: str) -> None:
        optimistic_mutations_total.labels(kind=kind, state=state).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
