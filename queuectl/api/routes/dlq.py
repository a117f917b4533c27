"""
Dead letter queue routes.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import API_V1_PREFIX
from queuectl.db import get_async_session
from queuectl.db.repository import JobRepository
from queuectl.observability.metrics import get_metrics
from queuectl.types.api import (
    DeadLetterListResponse,
    DeadLetterResponse,
    RetryDeadLetterResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/dlq", tags=["Dead Letter Queue"])


@router.get(
    "",
    response_model=DeadLetterListResponse,
    summary="List dead letter entries",
    description="List jobs that exhausted their retries, most recent failure first.",
)
async def list_dead_letters(
    session: AsyncSession = Depends(get_async_session),
) -> DeadLetterListResponse:
    """List dead letter entries."""
    entries = await JobRepository(session).list_dead_letters()
    return DeadLetterListResponse(
        entries=[DeadLetterResponse.model_validate(entry) for entry in entries],
        total=len(entries),
    )


@router.post(
    "/{job_id}/retry",
    response_model=RetryDeadLetterResponse,
    summary="Retry a dead letter entry",
    description=(
        "Move a dead letter entry back into the queue as a pending job. "
        "The attempt count is preserved."
    ),
)
async def retry_dead_letter(
    job_id: str,
    session: AsyncSession = Depends(get_async_session),
) -> RetryDeadLetterResponse:
    """
    Retry a job from the DLQ.

    NotFoundError (404) and ValidationError (400) are mapped by the
    application exception handlers.
    """
    job = await JobRepository(session).retry_dead_letter(job_id)
    await session.commit()

    get_metrics().record_dead_letter_retried()
    logger.info("Dead letter entry requeued via API", extra={"job_id": job_id})

    return RetryDeadLetterResponse(
        id=job.id,
        state=job.state,
        attempts=job.attempts,
    )
