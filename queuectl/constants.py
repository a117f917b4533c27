"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed by a worker)
    - PROCESSING -> COMPLETED (success, terminal)
    - PROCESSING -> PENDING (failure, retry scheduled via run_after)
    - PROCESSING -> dead letter queue (failure, retries exhausted; row moves)
    - PROCESSING -> PENDING (stale lock recovered by the reaper)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


class WorkerState(StrEnum):
    """Worker loop states."""

    IDLE = "idle"
    CLAIMING = "claiming"
    EXECUTING = "executing"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ConfigKey(StrEnum):
    """Config table keys with behavioral effect."""

    BACKOFF_BASE = "backoff_base"
    BASE_DELAY_SECONDS = "base_delay_seconds"
    MAX_RETRIES = "max_retries"


# Default values
DEFAULT_BACKOFF_BASE = 2
DEFAULT_BASE_DELAY_SECONDS = 1
DEFAULT_MAX_RETRIES = 3

# Seeded into the config table on first initialization
CONFIG_DEFAULTS: dict[str, str] = {
    ConfigKey.BACKOFF_BASE: str(DEFAULT_BACKOFF_BASE),
    ConfigKey.BASE_DELAY_SECONDS: str(DEFAULT_BASE_DELAY_SECONDS),
    ConfigKey.MAX_RETRIES: str(DEFAULT_MAX_RETRIES),
}

JOB_ID_PREFIX = "job"
LAST_ERROR_MAX_LENGTH = 1000

# Upper bound on a single retry delay, roughly ten years
MAX_BACKOFF_SECONDS = 10 * 365 * 24 * 3600.0

# Runner exit codes for failures that never produced a real exit status
EXIT_CODE_TIMEOUT = 124
EXIT_CODE_SPAWN_FAILED = 127

# Key used by get_job_stats for the dead letter count
DEAD_STATS_KEY = "dead"

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "queuectl_queue_depth"
METRIC_JOBS_ENQUEUED = "queuectl_jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "queuectl_jobs_claimed_total"
METRIC_JOB_OUTCOMES = "queuectl_job_outcomes_total"
METRIC_JOB_DURATION = "queuectl_job_duration_seconds"
METRIC_DLQ_RETRIED = "queuectl_dead_letters_retried_total"
METRIC_STALE_RECOVERED = "queuectl_stale_jobs_recovered_total"

# Job outcome labels
OUTCOME_COMPLETED = "completed"
OUTCOME_RETRY = "retry"
OUTCOME_DEAD = "dead"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_REPORT_OUTCOME = "report_outcome"
