"""
Tourkit — Health Check Route
==============================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Reports whether the planner has credentials and which storage
       endpoint uploads go to. No outbound calls: probing the geocoder or
       the planner would spend their rate limits every few seconds.

Status levels:
    - healthy:   planner configured
    - degraded:  planner not configured (uploads and geocoding still work)
"""

import logging
import time

from fastapi import APIRouter, Depends

from tourkit import __version__
from tourkit.config import settings
from tourkit.dependencies import get_planner
from tourkit.schemas.common import HealthResponse
from tourkit.services.planner_base import PlanningOracle

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(planner: PlanningOracle = Depends(get_planner)) -> HealthResponse:
    overall = "healthy"
    planner_status = "configured"

    if not await planner.health_check():
        planner_status = "not_configured"
        overall = "degraded"
        logger.warning("Health check: planner has no API key")

    return HealthResponse(
        status=overall,
        version=__version__,
        planner=planner_status,
        storage=settings.storage_url,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
