"""
Retry policy.

Pure decision functions for exponential backoff and dead-lettering, kept
apart from the repository so they can be tested without a database.
"""

import math
from dataclasses import dataclass

from queuectl.constants import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_MAX_RETRIES,
    MAX_BACKOFF_SECONDS,
)


@dataclass(frozen=True)
class RetrySettings:
    """
    Retry knobs read from the config table.

    Attributes:
        backoff_base: Exponent base for the backoff delay.
        base_delay_seconds: Delay multiplier in seconds.
        max_retries: Global retry ceiling applied on top of each job's own.
    """

    backoff_base: float = DEFAULT_BACKOFF_BASE
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES

    def backoff_for(self, attempts_before_failure: int) -> float:
        """Backoff delay for a failure that happened after N prior attempts."""
        return backoff_seconds(
            attempts_before_failure,
            self.backoff_base,
            self.base_delay_seconds,
        )


def backoff_seconds(
    attempts_before_failure: int,
    base: float,
    base_delay: float,
) -> float:
    """
    Compute the exponential backoff delay.

    The attempt count is measured before it is incremented for this failure,
    so the first failure waits ``base ** 0 * base_delay``. The result is
    capped at MAX_BACKOFF_SECONDS, so large attempt counts never overflow.

    Args:
        attempts_before_failure: Attempts recorded on the job before this failure.
        base: Exponent base.
        base_delay: Delay multiplier in seconds.

    Returns:
        Delay in seconds.
    """
    if attempts_before_failure < 0:
        raise ValueError("attempts_before_failure must be non-negative")
    try:
        delay = float(base**attempts_before_failure * base_delay)
    except OverflowError:
        return MAX_BACKOFF_SECONDS
    return clamp_backoff(delay)


def clamp_backoff(delay: float) -> float:
    """Bound a delay to [0, MAX_BACKOFF_SECONDS]; non-finite values take the cap."""
    if not math.isfinite(delay):
        return MAX_BACKOFF_SECONDS
    return min(max(delay, 0.0), MAX_BACKOFF_SECONDS)


def should_dead_letter(
    attempts_after_failure: int,
    job_max_retries: int,
    global_max_retries: int,
) -> bool:
    """
    Decide whether a failed job moves to the dead letter queue.

    The job's own ceiling and the global ceiling are independent caps:
    exceeding either one is sufficient.

    Args:
        attempts_after_failure: Attempt count including this failure.
        job_max_retries: The job's own max_retries.
        global_max_retries: The configured global max_retries.

    Returns:
        True if the job should be dead-lettered.
    """
    return (
        attempts_after_failure > job_max_retries
        or attempts_after_failure > global_max_retries
    )
