"""
Worker process for executing jobs.

The worker claims one job at a time from the shared store, runs its
command, and reports success, a scheduled retry, or a move to the dead
letter queue according to the retry policy.
"""

import asyncio
import logging
import os
import signal
import time

from queuectl.config import get_settings
from queuectl.constants import (
    OUTCOME_COMPLETED,
    OUTCOME_DEAD,
    OUTCOME_RETRY,
    SPAN_CLAIM_JOB,
    SPAN_EXECUTE_JOB,
    SPAN_REPORT_OUTCOME,
    WorkerState,
)
from queuectl.db import close_db, create_schema, get_engine, get_session_context, init_db
from queuectl.db.config_repository import ConfigRepository
from queuectl.db.models import Job
from queuectl.db.repository import JobRepository
from queuectl.errors import StoreError
from queuectl.observability.logging import job_log_context, setup_logging
from queuectl.observability.metrics import get_metrics, setup_metrics
from queuectl.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from queuectl.types.job import CommandResult
from queuectl.worker.runner import CommandRunner

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic claim through JobRepository (one job in flight at a time)
    - Exponential backoff and dead-lettering via the retry policy
    - Cooperative stop: an in-flight job always has its outcome reported
    - Store failures are logged and retried after a poll interval
    """

    def __init__(
        self,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        stop_poll_interval: float | None = None,
        execution_timeout: float | None = None,
        runner: CommandRunner | None = None,
    ):
        """
        Initialize the worker.

        Args:
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            poll_interval: Seconds to wait when no job is eligible.
            stop_poll_interval: Seconds between checks while waiting to stop.
            execution_timeout: Per-command timeout in seconds; 0 disables it.
            runner: Command runner. Defaults to a shell CommandRunner.
        """
        settings = get_settings()

        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        )
        self.stop_poll_interval = (
            stop_poll_interval
            if stop_poll_interval is not None
            else settings.worker_stop_poll_interval_seconds
        )
        self.execution_timeout = (
            execution_timeout
            if execution_timeout is not None
            else settings.worker_execution_timeout_seconds
        )
        self.runner = runner or CommandRunner()

        self.state = WorkerState.IDLE
        self.current_job_id: str | None = None
        self.jobs_processed = 0
        self._stop_event = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def is_stopping(self) -> bool:
        """Check if a stop has been requested."""
        return self._stop_event.is_set()

    async def start(self) -> None:
        """Run the polling loop until stop() is called."""
        logger.info("Worker starting", extra={"worker_id": self.worker_id})

        while not self.is_stopping:
            try:
                processed = await self.run_once()
                if not processed:
                    await self._idle_wait(self.poll_interval)

            except StoreError as e:
                logger.error(
                    f"Store error in worker loop: {e}",
                    extra={"worker_id": self.worker_id}
                )
                self._set_state(WorkerState.IDLE)
                await self._idle_wait(self.poll_interval)

            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id}
                )
                self._set_state(WorkerState.IDLE)
                await self._idle_wait(self.poll_interval)

        self.state = WorkerState.STOPPED
        logger.info(
            "Worker stopped",
            extra={"worker_id": self.worker_id, "jobs_processed": self.jobs_processed}
        )

    def stop(self) -> None:
        """
        Request a cooperative stop.

        No new jobs are claimed after this call. A job that is executing
        keeps running until its outcome has been reported.
        """
        if self.state == WorkerState.STOPPED:
            return
        logger.info(
            "Worker stopping",
            extra={"worker_id": self.worker_id, "current_job_id": self.current_job_id}
        )
        self._stop_event.set()
        self.state = WorkerState.STOPPING

    async def wait_stopped(self) -> None:
        """Wait until the loop has exited and any in-flight job is reported."""
        while self.state != WorkerState.STOPPED:
            if self.current_job_id is not None:
                logger.info(
                    "Waiting for current job to finish before shutdown",
                    extra={"worker_id": self.worker_id, "job_id": self.current_job_id}
                )
            await asyncio.sleep(self.stop_poll_interval)

    async def run_once(self) -> bool:
        """
        Claim and process at most one job.

        Returns:
            True if a job was claimed and its outcome reported.
        """
        self._set_state(WorkerState.CLAIMING)

        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", self.worker_id)
            async with get_session_context() as session:
                job = await JobRepository(session).claim(self.worker_id)

        if job is None:
            self._set_state(WorkerState.IDLE)
            return False

        self._metrics.record_job_claimed(self.worker_id)
        self.current_job_id = job.id
        self._set_state(WorkerState.EXECUTING)
        try:
            with job_log_context(job.id, self.worker_id):
                await self._process(job)
        finally:
            self.current_job_id = None
            self._set_state(WorkerState.IDLE)

        self.jobs_processed += 1
        return True

    async def _process(self, job: Job) -> None:
        """
        Execute a claimed job and report its outcome.

        Args:
            job: The claimed job snapshot.
        """
        logger.info(
            "Executing job",
            extra={
                "worker_id": self.worker_id,
                "job_id": job.id,
                "command": job.command,
                "attempts": job.attempts,
            }
        )

        start_time = time.monotonic()
        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("attempts", job.attempts)
                result = await self.runner.execute(job.command, self.execution_timeout)
                span.set_attribute("exit_code", result.exit_code)
        except Exception as e:
            logger.exception(
                "Exception executing job",
                extra={"job_id": job.id, "error": str(e)}
            )
            result = CommandResult(success=False, exit_code=1, error=f"Worker exception: {e}")

        duration = time.monotonic() - start_time

        with get_tracer().start_as_current_span(SPAN_REPORT_OUTCOME) as span:
            span.set_attribute("job_id", job.id)
            span.set_attribute("success", result.success)
            await self._report(job, result, duration)

    async def _report(self, job: Job, result: CommandResult, duration: float) -> None:
        """
        Record the outcome, retrying on store errors until it is written.

        A stop request does not cut this short.
        """
        report_attempts = 0
        while True:
            try:
                if result.success:
                    await self._report_success(job, result, duration)
                else:
                    await self._report_failure(job, result, duration)
                return
            except StoreError as e:
                report_attempts += 1
                logger.error(
                    "Failed to report job outcome, will retry",
                    extra={
                        "job_id": job.id,
                        "report_attempts": report_attempts,
                        "error": str(e),
                    }
                )
                await asyncio.sleep(self.poll_interval)

    async def _report_success(self, job: Job, result: CommandResult, duration: float) -> None:
        async with get_session_context() as session:
            updated = await JobRepository(session).complete(
                job.id, result.combined_output, worker_id=self.worker_id
            )

        if updated is None:
            return

        logger.info(
            "Job completed successfully",
            extra={"job_id": job.id, "duration": f"{duration:.2f}s"}
        )
        self._metrics.record_job_outcome(OUTCOME_COMPLETED, duration)

    async def _report_failure(self, job: Job, result: CommandResult, duration: float) -> None:
        async with get_session_context() as session:
            retry_settings = await ConfigRepository(session).get_retry_settings()
            outcome = await JobRepository(session).fail_with_policy(
                job.id,
                result.failure_reason,
                retry_settings.backoff_for(job.attempts),
                retry_settings.max_retries,
                worker_id=self.worker_id,
            )

        if outcome is None:
            return

        if outcome.moved_to_dead:
            logger.warning(
                f"Job moved to DLQ after {outcome.attempts} attempts",
                extra={"job_id": job.id, "error": result.failure_reason}
            )
            self._metrics.record_job_outcome(OUTCOME_DEAD, duration)
        else:
            logger.warning(
                "Job failed, retry scheduled",
                extra={
                    "job_id": job.id,
                    "attempts": outcome.attempts,
                    "run_after": outcome.run_after.isoformat() if outcome.run_after else None,
                    "error": result.failure_reason,
                }
            )
            self._metrics.record_job_outcome(OUTCOME_RETRY, duration)

    async def _idle_wait(self, seconds: float) -> None:
        """Sleep for up to ``seconds``, returning early if stop is requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    def _set_state(self, state: WorkerState) -> None:
        # Once stopping, the loop only moves on to STOPPED
        if self.is_stopping:
            self.state = WorkerState.STOPPING
        else:
            self.state = state


async def run_workers(count: int = 1, worker_id_prefix: str | None = None) -> None:
    """
    Run ``count`` workers in this process until SIGINT or SIGTERM.

    Args:
        count: Number of concurrent workers.
        worker_id_prefix: Prefix for worker ids. Defaults to hostname + PID.
    """
    prefix = worker_id_prefix or f"{os.uname().nodename}-{os.getpid()}"
    workers = [Worker(worker_id=f"{prefix}-{i}") for i in range(count)]

    def stop_all() -> None:
        for worker in workers:
            worker.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_all)

    logger.info(f"Started {count} worker(s)", extra={"worker_id_prefix": prefix})

    try:
        await asyncio.gather(*(worker.start() for worker in workers))
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


async def run_async(count: int = 1) -> None:
    """Run workers asynchronously."""
    settings = get_settings()
    setup_metrics(port=settings.worker_metrics_port)
    setup_tracing()
    await init_db()
    await create_schema()
    instrument_sqlalchemy(get_engine())

    try:
        await run_workers(count)
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    setup_logging()
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
