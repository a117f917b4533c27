"""
Health, readiness and metrics routes.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl import __version__
from queuectl.constants import ConfigKey
from queuectl.db import get_async_session
from queuectl.db.config_repository import ConfigRepository
from queuectl.db.repository import JobRepository
from queuectl.observability.metrics import get_metrics
from queuectl.types.api import HealthResponse
from queuectl.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Report store connectivity and current queue depth.",
)
async def health_check(
    session: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Report service health.

    The store is considered healthy when the job counts can be read. The
    counts double as a quick view of queue depth.
    """
    try:
        stats = await JobRepository(session).get_job_stats()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("Health check could not read the store", extra={"error": str(e)})
        return HealthResponse(
            status="degraded",
            version=__version__,
            database="unhealthy",
            timestamp=utcnow(),
        )

    get_metrics().update_queue_depth(stats)
    return HealthResponse(
        status="healthy",
        version=__version__,
        database="healthy",
        queue=stats,
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Ready once the schema exists and retry config is seeded.",
)
async def readiness_check(
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    try:
        config = await ConfigRepository(session).list_all()
    except SQLAlchemyError:
        await session.rollback()
        return {"ready": False}

    return {"ready": all(key in config for key in ConfigKey)}


@router.get("/live", summary="Liveness check")
async def liveness_check() -> dict:
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics in text format.",
)
async def metrics() -> Response:
    collector = get_metrics()
    return Response(
        content=collector.get_metrics(),
        media_type=collector.get_content_type(),
    )
