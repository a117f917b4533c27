"""
Stale job reaper.

A worker that crashes between claiming a job and reporting its outcome
leaves the job in processing forever. The reaper is opt-in: when run, it
periodically returns jobs whose lock is older than a threshold to pending
so another worker can pick them up. Attempts are not incremented.
"""

import asyncio
import logging
import signal

from queuectl.config import get_settings
from queuectl.db import close_db, create_schema, get_session_context, init_db
from queuectl.db.repository import JobRepository
from queuectl.errors import StoreError
from queuectl.observability.logging import setup_logging
from queuectl.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class Reaper:
    """
    Recovers jobs stuck in processing.

    Runs periodically to:
    1. Find processing jobs whose locked_at is older than stale_after
    2. Return them to pending with their lock cleared
    3. Record metrics for monitoring

    The threshold must exceed the longest expected command runtime, since
    a slow but healthy job is indistinguishable from an abandoned one.
    """

    def __init__(
        self,
        interval_seconds: float | None = None,
        stale_after_seconds: float | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            interval_seconds: Seconds between reaper runs.
            stale_after_seconds: Lock age after which a job is recovered.
        """
        settings = get_settings()
        self.interval = (
            interval_seconds if interval_seconds is not None else settings.reaper_interval_seconds
        )
        self.stale_after = (
            stale_after_seconds
            if stale_after_seconds is not None
            else settings.reaper_stale_after_seconds
        )
        self._stop_event = asyncio.Event()
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"stale_after_seconds": self.stale_after}
        )

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except StoreError as e:
                logger.error(f"Store error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._stop_event.set()

    async def run_once(self) -> int:
        """
        Run the reaper once (for testing or cron-style execution).

        Returns:
            Number of jobs recovered.
        """
        async with get_session_context() as session:
            count = await JobRepository(session).recover_stale_jobs(self.stale_after)

        self._metrics.record_stale_recovered(count)
        return count


async def run_async(stale_after_seconds: float | None = None) -> None:
    """Run the reaper asynchronously."""
    await init_db()
    await create_schema()

    reaper = Reaper(stale_after_seconds=stale_after_seconds)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, reaper.stop)

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    setup_logging()
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
