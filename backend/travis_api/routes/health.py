"""
Travis API — Health Check Route
=================================

What:  Health check endpoint for the platform router and load balancers.
How:   Runs SELECT 1 against the main database (and the logs database when
       one is configured) and reports the deployed release.

Status levels:
    healthy:   all databases reachable
    degraded:  logs database unreachable (API reads still work)
    unhealthy: main database unreachable
"""

import logging
import time

from fastapi import APIRouter, Request

from travis_api import __version__, database
from travis_api.deploy import deploy_sha
from travis_api.schemas.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Module-level: initialized once when the module loads
_start_time = time.time()


@router.get(
    "",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request) -> HealthResponse:
    overall = "healthy"

    # ── Main database: unreachable means the API is down ─────────────────
    db_status = "connected"
    if not await database.ping(database.MAIN):
        db_status = "disconnected"
        overall = "unhealthy"

    # ── Logs database: only checked when configured separately ──────────
    logs_status = None
    if database.LOGS in database.engines():
        logs_status = "connected"
        if not await database.ping(database.LOGS):
            logs_status = "disconnected"
            overall = "degraded" if overall != "unhealthy" else overall

    return HealthResponse(
        status=overall,
        version=__version__,
        deploy_sha=deploy_sha(request.app.state.config),
        database=db_status,
        logs_database=logs_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
