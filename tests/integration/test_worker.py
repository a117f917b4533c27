"""
Integration tests for worker functionality.
"""

import asyncio

import pytest

from queuectl.constants import JobState, WorkerState
from queuectl.db import get_session_context
from queuectl.db.config_repository import ConfigRepository
from queuectl.db.repository import JobRepository
from queuectl.errors import StoreError
from queuectl.worker.main import Worker
from queuectl.worker.runner import CommandRunner


async def enqueue(command: str, job_id: str, **kwargs) -> None:
    async with get_session_context() as session:
        await JobRepository(session).enqueue(command=command, job_id=job_id, **kwargs)


async def get_job(job_id: str):
    async with get_session_context() as session:
        return await JobRepository(session).get_job(job_id)


async def get_dead_letter(job_id: str):
    async with get_session_context() as session:
        return await JobRepository(session).get_dead_letter(job_id)


async def set_config(key: str, value: str) -> None:
    async with get_session_context() as session:
        await ConfigRepository(session).set(key, value)


async def wait_for(predicate, timeout: float = 5.0) -> None:
    """Poll until predicate() is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


def make_worker(runner, worker_id: str = "test-worker") -> Worker:
    return Worker(
        worker_id=worker_id,
        poll_interval=0.05,
        stop_poll_interval=0.01,
        execution_timeout=0,
        runner=runner,
    )


@pytest.mark.usefixtures("initialized_db")
class TestWorkerIntegration:
    """Integration tests for worker job processing."""

    async def test_run_once_empty_queue(self, fake_runner):
        """Test run_once reports no work on an empty queue."""
        worker = make_worker(fake_runner)

        assert await worker.run_once() is False
        assert worker.state == WorkerState.IDLE
        assert fake_runner.commands == []

    async def test_successful_job_completes(self, fake_runner):
        """Test a successful command completes the job with its output."""
        await enqueue("ok", "j1")
        worker = make_worker(fake_runner)

        assert await worker.run_once() is True

        job = await get_job("j1")
        assert job.state == JobState.COMPLETED
        assert job.output == "done\n"
        assert job.locked_by is None
        assert worker.jobs_processed == 1

    async def test_failed_job_scheduled_for_retry(self, fake_runner):
        """Test a failed command returns the job to pending with backoff."""
        await enqueue("bad", "j1")
        worker = make_worker(fake_runner)

        assert await worker.run_once() is True

        job = await get_job("j1")
        assert job.state == JobState.PENDING
        assert job.attempts == 1
        assert job.run_after is not None

        # Default backoff keeps the job ineligible for about a second
        assert await worker.run_once() is False

    async def test_exhausted_job_moves_to_dlq(self, fake_runner):
        """Test a job that keeps failing ends in the DLQ after max_retries + 1 runs."""
        await set_config("base_delay_seconds", "0")
        await enqueue("bad", "j1", max_retries=2)
        worker = make_worker(fake_runner)

        for _ in range(3):
            assert await worker.run_once() is True

        assert await get_job("j1") is None
        dead = await get_dead_letter("j1")
        assert dead.attempts == 3
        assert dead.last_error == "bad: failed"
        assert fake_runner.commands == ["bad", "bad", "bad"]

    async def test_real_shell_command(self):
        """Test the default runner against a real shell."""
        await enqueue("echo from-shell", "j1")
        worker = make_worker(CommandRunner())

        assert await worker.run_once() is True

        job = await get_job("j1")
        assert job.state == JobState.COMPLETED
        assert job.output == "from-shell\n"

    async def test_stop_waits_for_in_flight_job(self, slow_runner):
        """Test stop lets the current job finish and claims nothing further."""
        await enqueue("ok", "j1")
        await enqueue("ok", "j2")
        worker = make_worker(slow_runner)

        task = asyncio.create_task(worker.start())
        await wait_for(lambda: worker.current_job_id is not None)
        in_flight = worker.current_job_id

        worker.stop()
        assert worker.state == WorkerState.STOPPING

        await asyncio.wait_for(worker.wait_stopped(), timeout=5)
        await task

        assert worker.state == WorkerState.STOPPED
        assert worker.jobs_processed == 1
        assert (await get_job(in_flight)).state == JobState.COMPLETED

        other = "j2" if in_flight == "j1" else "j1"
        assert (await get_job(other)).state == JobState.PENDING

    async def test_stop_while_idle(self, fake_runner):
        """Test an idle worker stops promptly."""
        worker = make_worker(fake_runner)
        worker.poll_interval = 10

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        worker.stop()

        await asyncio.wait_for(worker.wait_stopped(), timeout=2)
        await task
        assert worker.state == WorkerState.STOPPED

    async def test_store_error_does_not_kill_loop(self, fake_runner, monkeypatch):
        """Test the loop logs a store failure and keeps polling."""
        original_claim = JobRepository.claim
        calls = {"count": 0}

        async def flaky_claim(self, worker_id):
            calls["count"] += 1
            if calls["count"] == 1:
                raise StoreError("database is locked")
            return await original_claim(self, worker_id)

        monkeypatch.setattr(JobRepository, "claim", flaky_claim)
        await enqueue("ok", "j1")
        worker = make_worker(fake_runner)

        task = asyncio.create_task(worker.start())
        await wait_for(lambda: worker.jobs_processed == 1)
        worker.stop()
        await asyncio.wait_for(task, timeout=2)

        assert calls["count"] >= 2
        assert (await get_job("j1")).state == JobState.COMPLETED

    async def test_runner_exception_counts_as_failure(self):
        """Test an exception from the runner is reported as a failed attempt."""

        class ExplodingRunner:
            async def execute(self, command, timeout_seconds=0):
                raise RuntimeError("kaboom")

        await enqueue("anything", "j1")
        worker = make_worker(ExplodingRunner())

        assert await worker.run_once() is True

        job = await get_job("j1")
        assert job.state == JobState.PENDING
        assert job.attempts == 1

    async def test_workers_never_share_a_job(self, slow_runner):
        """Test concurrent workers each run distinct jobs."""
        for i in range(4):
            await enqueue("ok", f"j{i}")
        workers = [make_worker(slow_runner, worker_id=f"w{i}") for i in range(3)]

        tasks = [asyncio.create_task(worker.start()) for worker in workers]
        await wait_for(lambda: sum(w.jobs_processed for w in workers) == 4, timeout=10)
        for worker in workers:
            worker.stop()
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=5)

        assert sorted(slow_runner.commands) == ["ok"] * 4
        for i in range(4):
            assert (await get_job(f"j{i}")).state == JobState.COMPLETED

    async def test_failure_report_retried_after_store_error(self, fake_runner, monkeypatch):
        """Test a store error while reporting a failure is retried, not left in processing."""
        original_fail = JobRepository.fail_with_policy
        calls = {"count": 0}

        async def flaky_fail(self, *args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise StoreError("database is locked")
            return await original_fail(self, *args, **kwargs)

        monkeypatch.setattr(JobRepository, "fail_with_policy", flaky_fail)
        await enqueue("bad", "j1")
        worker = make_worker(fake_runner)

        assert await worker.run_once() is True

        assert calls["count"] == 2
        assert fake_runner.commands == ["bad"]
        job = await get_job("j1")
        assert job.state == JobState.PENDING
        assert job.attempts == 1
        assert job.locked_by is None

    async def test_stop_waits_for_report_retry(self, fake_runner, monkeypatch):
        """Test a stop requested while the report is being retried still records the outcome."""
        original_complete = JobRepository.complete
        calls = {"count": 0}

        async def flaky_complete(self, *args, **kwargs):
            calls["count"] += 1
            if calls["count"] <= 2:
                raise StoreError("database is locked")
            return await original_complete(self, *args, **kwargs)

        monkeypatch.setattr(JobRepository, "complete", flaky_complete)
        await enqueue("ok", "j1")
        worker = make_worker(fake_runner)

        task = asyncio.create_task(worker.start())
        await wait_for(lambda: calls["count"] >= 1)
        worker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert calls["count"] == 3
        assert worker.jobs_processed == 1
        assert worker.state == WorkerState.STOPPED
        job = await get_job("j1")
        assert job.state == JobState.COMPLETED
        assert job.output == "done\n"

    async def test_many_attempts_backoff_does_not_strand_job(self, fake_runner):
        """Test a failure with a very large backoff still schedules a retry."""
        await set_config("max_retries", "100")
        await enqueue("bad", "j1", max_retries=100, attempts=40)
        worker = make_worker(fake_runner)

        assert await worker.run_once() is True

        job = await get_job("j1")
        assert job.state == JobState.PENDING
        assert job.attempts == 41
        assert job.locked_by is None
        assert job.run_after is not None
