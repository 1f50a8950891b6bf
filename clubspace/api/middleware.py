# clubspace/api/middleware.py
"""
Prometheus metrics middleware for HTTP request tracking.

Records duration and status of every request except scrapes of the metrics
endpoint itself.
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..monitoring.prometheus_metrics import prometheus_metrics

METRICS_PATH = "/metrics"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics for HTTP requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        # Route template keeps label cardinality bounded (/conversations/{conversation_id})
        method = request.method
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            path = getattr(route, "path", None) or request.url.path
            prometheus_metrics.record_http_request(
                method=method,
                endpoint=path,
                duration=time.perf_counter() - start_time,
                status_code=status_code,
            )
