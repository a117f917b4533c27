"""
Small shared helpers for timestamps and identifiers.
"""

from datetime import UTC, datetime
from uuid import uuid4

from queuectl.constants import JOB_ID_PREFIX


def utcnow() -> datetime:
    """
    Current time as a naive UTC datetime.

    All stored timestamps are naive UTC so that SQL comparisons behave the
    same on SQLite and PostgreSQL.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def generate_job_id(prefix: str = JOB_ID_PREFIX) -> str:
    """Generate a fresh job id such as ``job-3f2b...``."""
    return f"{prefix}-{uuid4()}"
