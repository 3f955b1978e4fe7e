"""
CodeSafe Backend — Health Check Route
=======================================

What:  Health check endpoint for monitoring and load balancer checks.
How:   Checks the database and the storage gateway, returns aggregate status.
Who:   Docker health checks, load balancers, monitoring.

Status levels:
    - healthy:   database and storage reachable (HTTP 200)
    - degraded:  storage unreachable; notes still work, uploads do not (HTTP 200)
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from codesafe import __version__
from codesafe.config import settings
from codesafe.database import engine
from codesafe.schemas.note import HealthResponse
from codesafe.services.attachment_service import get_storage_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    storage_status = "available"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Storage ─────────────────────────────────────────────────────
    try:
        if not await get_storage_gateway().health_check():
            storage_status = "unavailable"
    except Exception as e:
        storage_status = "unavailable"
        logger.warning("Health check: storage unreachable: %s", str(e))
    if storage_status != "available" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        storage_backend=settings.storage_backend,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
