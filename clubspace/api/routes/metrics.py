# clubspace/api/routes/metrics.py
"""
Prometheus metrics endpoint.

Public, unauthenticated, following standard Prometheus practice. Exposes the
dedicated registry fed by ``measure_operation`` and the realtime/unread
counters.
"""

from fastapi import APIRouter, Response

from ...monitoring.prometheus_metrics import prometheus_metrics

router = APIRouter(tags=["monitoring"])


@router.get("/metrics", include_in_schema=False)
async def get_metrics() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
