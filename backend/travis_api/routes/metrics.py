"""
Travis API — Prometheus Metrics Route
=======================================

GET /metrics serves the request and query metrics in the Prometheus text
exposition format. Registered only when ENABLE_METRICS_ENDPOINT is set.
"""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from travis_api.monitoring import REGISTRY

router = APIRouter(tags=["Monitoring"])


@router.get("", summary="Prometheus metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
