"""
Type definitions for queuectl.
Contains input/output type definitions for all functions, grouped by module.
"""

from queuectl.types.api import (
    ConfigEntryResponse,
    ConfigValueRequest,
    DeadLetterListResponse,
    DeadLetterResponse,
    EnqueueJobRequest,
    ErrorResponse,
    HealthResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    RetryDeadLetterResponse,
)
from queuectl.types.job import (
    CommandResult,
    FailureOutcome,
)

__all__ = [
    # API types
    "EnqueueJobRequest",
    "JobResponse",
    "JobListResponse",
    "DeadLetterResponse",
    "DeadLetterListResponse",
    "RetryDeadLetterResponse",
    "JobStatsResponse",
    "ConfigValueRequest",
    "ConfigEntryResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "CommandResult",
    "FailureOutcome",
]
