"""
Job management routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import API_V1_PREFIX, SPAN_ENQUEUE_JOB, JobState
from queuectl.db import get_async_session
from queuectl.db.repository import JobRepository
from queuectl.observability.metrics import get_metrics
from queuectl.observability.tracing import get_tracer
from queuectl.types.api import (
    EnqueueJobRequest,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a job",
    description="Add a shell command to the queue as a pending job.",
)
async def enqueue_job(
    request: EnqueueJobRequest,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Enqueue a new job.

    Args:
        request: Job enqueue request.
        session: Database session.

    Returns:
        JobResponse for the pending job.
    """
    with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB):
        repo = JobRepository(session)
        job = await repo.enqueue(
            command=request.command,
            job_id=request.id,
            max_retries=request.max_retries,
            run_after=request.run_after,
        )
        await session.commit()

    get_metrics().record_job_enqueued()
    return JobResponse.model_validate(job)


@router.get(
    "/stats/summary",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Get job counts by state, including the dead letter queue.",
)
async def get_job_stats(
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    """
    Get job statistics.

    Also refreshes the queue depth gauge.
    """
    stats = await JobRepository(session).get_job_stats()
    get_metrics().update_queue_depth(stats)
    return JobStatsResponse(stats=stats)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: str,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job is not found.
    """
    job = await JobRepository(session).get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.model_validate(job)


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs, most recent first, optionally filtered by state.",
)
async def list_jobs(
    state: JobState | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    """
    List jobs.

    Args:
        state: Optional state filter.
        limit: Maximum number of jobs.
        offset: Pagination offset.
        session: Database session.
    """
    jobs = await JobRepository(session).list_jobs(state=state, limit=limit, offset=offset)

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
    )
