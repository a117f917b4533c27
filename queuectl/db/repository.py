"""
Job repository for database operations.
Implements the core data access patterns for the job lifecycle.
"""

import logging
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import (
    DEAD_STATS_KEY,
    DEFAULT_MAX_RETRIES,
    LAST_ERROR_MAX_LENGTH,
    JobState,
)
from queuectl.db.models import DeadLetter, Job
from queuectl.errors import NotFoundError, ValidationError
from queuectl.policy import clamp_backoff, should_dead_letter
from queuectl.types.job import FailureOutcome
from queuectl.utils import generate_job_id, utcnow

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    The only component that mutates the jobs and dead_letters tables.
    Every method runs inside the caller's session; the caller owns the
    transaction boundary (see get_session_context).

    Implements atomic operations for:
    - Job enqueue
    - Claim with a single conditional UPDATE
    - Completion, retry scheduling and dead-lettering
    - Dead letter re-submission
    - Stale lock recovery
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def enqueue(
        self,
        command: str | None,
        job_id: str | None = None,
        max_retries: int | None = None,
        attempts: int = 0,
        created_at: datetime | None = None,
        run_after: datetime | None = None,
    ) -> Job:
        """
        Insert a new pending job.

        Args:
            command: Shell command to execute. Required.
            job_id: Optional client-supplied id. Generated when absent.
            max_retries: Per-job retry ceiling. Defaults to 3.
            attempts: Initial attempt count (override for testing).
            created_at: Creation time override (for testing).
            run_after: Earliest time the job may be claimed.

        Returns:
            The inserted Job.

        Raises:
            ValidationError: If the command is missing, counts are negative,
                or a job with the same id already exists.
        """
        if command is None or not command.strip():
            raise ValidationError("Job must contain a non-empty 'command'")
        if max_retries is None:
            max_retries = DEFAULT_MAX_RETRIES
        if max_retries < 0 or attempts < 0:
            raise ValidationError("max_retries and attempts must be non-negative")

        job_id = job_id or generate_job_id()
        if await self.get_job(job_id) is not None:
            raise ValidationError(f"Job '{job_id}' already exists")

        now = utcnow()
        job = Job(
            id=job_id,
            command=command,
            state=JobState.PENDING,
            attempts=attempts,
            max_retries=max_retries,
            created_at=created_at or now,
            updated_at=now,
            run_after=run_after,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Enqueued job",
            extra={"job_id": job.id, "max_retries": job.max_retries}
        )
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID, always reading the current row.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        state: JobState | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Sequence[Job]:
        """
        List jobs, most recently created first.

        Args:
            state: Optional state filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            The matching jobs.
        """
        stmt = select(Job).order_by(Job.created_at.desc(), Job.id.desc())
        if state is not None:
            stmt = stmt.where(Job.state == state)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().all()

    async def claim(self, worker_id: str) -> Job | None:
        """
        Atomically claim the oldest eligible pending job.

        A job is eligible when it is pending and its run_after is unset or
        has passed. The candidate is selected and locked by one conditional
        UPDATE, guarded by state = 'pending' at update time, so two
        concurrent claimants can never both win the same row. On PostgreSQL
        the candidate subquery also uses FOR UPDATE SKIP LOCKED so that
        concurrent claimants move on to other rows instead of queueing.

        Args:
            worker_id: Identity of the claiming worker.

        Returns:
            The locked Job, or None if nothing is eligible.
        """
        now = utcnow()

        candidate = (
            select(Job.id)
            .where(
                Job.state == JobState.PENDING,
                or_(Job.run_after.is_(None), Job.run_after <= now),
            )
            .order_by(Job.created_at.asc(), Job.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .correlate(None)
            .scalar_subquery()
        )

        stmt = (
            update(Job)
            .where(
                Job.id == candidate,
                Job.state == JobState.PENDING,
            )
            .values(
                state=JobState.PROCESSING,
                locked_by=worker_id,
                locked_at=now,
                updated_at=now,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        claimed_id = result.scalar_one_or_none()
        if claimed_id is None:
            return None

        job = await self.get_job(claimed_id)
        logger.info(
            "Claimed job",
            extra={"job_id": claimed_id, "worker_id": worker_id}
        )
        return job

    async def complete(
        self,
        job_id: str,
        output: str | None = None,
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Mark a processing job as completed and release its lock.

        Only a job that is still processing (and, when worker_id is given,
        still locked by that worker) is updated. Anything else, including a
        missing id or a late report for a job that was already reaped or
        finished, is a no-op.

        Args:
            job_id: The job id.
            output: Captured command output.
            worker_id: Worker expected to hold the lock.

        Returns:
            The updated Job, or None if nothing was updated.
        """
        conditions = [Job.id == job_id, Job.state == JobState.PROCESSING]
        if worker_id is not None:
            conditions.append(Job.locked_by == worker_id)

        stmt = (
            update(Job)
            .where(*conditions)
            .values(
                state=JobState.COMPLETED,
                output=output,
                locked_by=None,
                locked_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount == 0:
            logger.warning(
                "Complete ignored: job is not processing under this worker",
                extra={"job_id": job_id, "worker_id": worker_id}
            )
            return None

        logger.info("Job completed", extra={"job_id": job_id})
        return await self.get_job(job_id)

    async def fail_with_policy(
        self,
        job_id: str,
        last_error: str,
        backoff_seconds: float,
        max_retries_ceiling: int,
        worker_id: str | None = None,
    ) -> FailureOutcome | None:
        """
        Record a failed attempt: schedule a retry or move to the DLQ.

        The attempt count is incremented. If it now exceeds the job's own
        max_retries or the global ceiling, the job row is deleted and a
        dead letter entry is written in the same transaction. Otherwise the
        job returns to pending with run_after = now + backoff_seconds.

        Args:
            job_id: The job id.
            last_error: Failure description, truncated for the DLQ.
            backoff_seconds: Delay before the job is eligible again.
            max_retries_ceiling: Global max_retries from config.
            worker_id: Worker expected to hold the lock.

        Returns:
            The outcome, or None if the job is missing, is not processing,
            or is locked by another worker.
        """
        job = await self.get_job(job_id)
        if job is None:
            logger.warning("Failure reported for unknown job", extra={"job_id": job_id})
            return None
        if job.state != JobState.PROCESSING or (
            worker_id is not None and job.locked_by != worker_id
        ):
            logger.warning(
                "Failure ignored: job is not processing under this worker",
                extra={"job_id": job_id, "worker_id": worker_id, "state": job.state.value}
            )
            return None

        now = utcnow()
        attempts = job.attempts + 1

        if should_dead_letter(attempts, job.max_retries, max_retries_ceiling):
            dead = DeadLetter(
                id=job.id,
                command=job.command,
                attempts=attempts,
                max_retries=job.max_retries,
                failed_at=now,
                last_error=_truncate_error(last_error),
                created_at=job.created_at,
            )
            await self._session.delete(job)
            await self._session.flush()
            # merge replaces a leftover entry with the same id
            await self._session.merge(dead)
            await self._session.flush()

            logger.warning(
                f"Job moved to DLQ after {attempts} attempts",
                extra={"job_id": job_id, "error": dead.last_error}
            )
            return FailureOutcome(job_id=job_id, attempts=attempts, moved_to_dead=True)

        run_after = now + timedelta(seconds=clamp_backoff(backoff_seconds))
        job.state = JobState.PENDING
        job.attempts = attempts
        job.run_after = run_after
        job.locked_by = None
        job.locked_at = None
        job.updated_at = now
        await self._session.flush()

        logger.info(
            "Job scheduled for retry",
            extra={"job_id": job_id, "attempts": attempts, "run_after": run_after.isoformat()}
        )
        return FailureOutcome(
            job_id=job_id,
            attempts=attempts,
            moved_to_dead=False,
            run_after=run_after,
        )

    async def get_dead_letter(self, job_id: str) -> DeadLetter | None:
        """Get a dead letter entry by job id."""
        stmt = (
            select(DeadLetter)
            .where(DeadLetter.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_dead_letters(self) -> Sequence[DeadLetter]:
        """List dead letter entries, most recent failure first."""
        stmt = (
            select(DeadLetter)
            .order_by(DeadLetter.failed_at.desc(), DeadLetter.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def retry_dead_letter(self, job_id: str) -> Job:
        """
        Move a dead letter entry back into the queue as a pending job.

        The attempt count is preserved, so a job that fails again keeps
        counting toward the same ceiling.

        Args:
            job_id: The dead letter entry id.

        Returns:
            The re-created pending Job.

        Raises:
            NotFoundError: If no dead letter entry has this id.
            ValidationError: If a live job already uses this id.
        """
        dead = await self.get_dead_letter(job_id)
        if dead is None:
            raise NotFoundError(f"Dead letter job '{job_id}' not found")
        if await self.get_job(job_id) is not None:
            raise ValidationError(f"Job '{job_id}' already exists in the queue")

        job = Job(
            id=dead.id,
            command=dead.command,
            state=JobState.PENDING,
            attempts=dead.attempts,
            max_retries=dead.max_retries,
            created_at=dead.created_at,
            updated_at=utcnow(),
        )
        await self._session.delete(dead)
        await self._session.flush()
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Job retried from DLQ",
            extra={"job_id": job_id, "attempts": job.attempts}
        )
        return job

    async def recover_stale_jobs(self, stale_after_seconds: float) -> int:
        """
        Return jobs stuck in processing to pending.

        A job is stale when its lock is older than the threshold, which
        happens when a worker dies between claim and outcome report. The
        attempt count is left unchanged.

        Args:
            stale_after_seconds: Lock age after which a job is recovered.

        Returns:
            Number of recovered jobs.
        """
        now = utcnow()
        cutoff = now - timedelta(seconds=stale_after_seconds)

        stmt = (
            update(Job)
            .where(
                Job.state == JobState.PROCESSING,
                Job.locked_at < cutoff,
            )
            .values(
                state=JobState.PENDING,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.warning(
                f"Recovered {count} stale processing jobs",
                extra={"stale_after_seconds": stale_after_seconds}
            )

        return count

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get job counts by state, plus the dead letter count.

        Returns:
            Dictionary of state -> count, including every state and "dead".
        """
        stats = {state.value: 0 for state in JobState}

        stmt = select(Job.state, func.count()).group_by(Job.state)
        result = await self._session.execute(stmt)
        for state, count in result.all():
            stats[JobState(state).value] = count

        dead_count = await self._session.execute(
            select(func.count()).select_from(DeadLetter)
        )
        stats[DEAD_STATS_KEY] = dead_count.scalar() or 0
        return stats


def _truncate_error(error: str | None) -> str:
    return str(error if error is not None else "")[:LAST_ERROR_MAX_LENGTH]
