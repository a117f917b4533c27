"""
SQLAlchemy database models.
Defines the jobs, dead_letters and config tables.
"""

from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from queuectl.constants import DEFAULT_MAX_RETRIES, JobState


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state.
    All job lifecycle transitions are managed through JobRepository.

    Key constraints:
    - locked_by and locked_at are set if and only if state is processing
    - run_after, when set on a pending job, is the earliest claim time
    - attempts never decreases
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    # Opaque shell command interpreted by the command runner
    command: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    state: Mapped[JobState] = mapped_column(
        Enum(JobState, name="job_state", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobState.PENDING,
        index=True,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_RETRIES,
    )

    # Timestamps (naive UTC)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )

    # Lock held while processing
    locked_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Backoff scheduling
    run_after: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Captured stdout + stderr of the successful run
    output: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        # Index for claim polling: eligible pending jobs, oldest first
        Index("ix_jobs_claim_poll", "state", "run_after", "created_at"),
        # Index for stale lock recovery
        Index("ix_jobs_locked_at", "locked_at"),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, state={self.state}, "
            f"attempts={self.attempts}/{self.max_retries}, locked_by={self.locked_by})"
        )


class DeadLetter(Base):
    """
    Terminal snapshot of a job that exhausted its retries.

    Rows are created only by the failure path and removed only when the
    entry is retried back into the jobs table.
    """

    __tablename__ = "dead_letters"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    command: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    failed_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"DeadLetter(id={self.id}, attempts={self.attempts}, failed_at={self.failed_at})"


class ConfigEntry(Base):
    """Key/value runtime configuration. Values are stored as text."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    value: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"ConfigEntry({self.key}={self.value!r})"
