"""
API request and response type definitions.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from queuectl.constants import JobState


class EnqueueJobRequest(BaseModel):
    """Request body for enqueuing a new job."""

    command: str = Field(..., min_length=1, description="Shell command to execute")
    id: str | None = Field(default=None, description="Job id; generated when omitted")
    max_retries: int | None = Field(default=None, ge=0, description="Per-job retry ceiling")
    run_after: datetime | None = Field(
        default=None, description="Earliest time (UTC) the job may run"
    )

    @field_validator("command")
    @classmethod
    def command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command cannot be blank")
        return value

    @field_validator("run_after")
    @classmethod
    def run_after_naive_utc(cls, value: datetime | None) -> datetime | None:
        # Timestamps are stored as naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC).replace(tzinfo=None)
        return value


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    command: str
    state: JobState
    attempts: int
    max_retries: int
    created_at: datetime
    updated_at: datetime
    locked_by: str | None
    locked_at: datetime | None
    run_after: datetime | None
    output: str | None


class JobListResponse(BaseModel):
    """List of jobs."""

    jobs: list[JobResponse]
    total: int


class DeadLetterResponse(BaseModel):
    """Dead letter entry details."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    command: str
    attempts: int
    max_retries: int
    failed_at: datetime
    last_error: str | None
    created_at: datetime


class DeadLetterListResponse(BaseModel):
    """List of dead letter entries."""

    entries: list[DeadLetterResponse]
    total: int


class RetryDeadLetterResponse(BaseModel):
    """Response body after retrying a dead letter entry."""

    id: str
    state: JobState
    attempts: int
    message: str = "Job queued for retry"


class JobStatsResponse(BaseModel):
    """Job counts by state."""

    stats: dict[str, int]


class ConfigValueRequest(BaseModel):
    """Request body for setting a config value."""

    value: str = Field(..., description="Value, stored as text")


class ConfigEntryResponse(BaseModel):
    """A single config entry."""

    key: str
    value: str | None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    queue: dict[str, int] = Field(default_factory=dict, description="Job counts by state")
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
