"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel


class CommandResult(BaseModel):
    """
    Result of running a job's command.
    Returned by the command runner; a failure here is data, not an exception.
    """

    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    duration_ms: float | None = None

    @property
    def combined_output(self) -> str:
        """Captured stdout followed by stderr, stored as the job output."""
        return self.stdout + self.stderr

    @property
    def failure_reason(self) -> str:
        """Best available description of why the command failed."""
        if self.error:
            return self.error
        if self.stderr.strip():
            return self.stderr.strip()
        return f"exit code {self.exit_code}"


@dataclass
class FailureOutcome:
    """
    Result of reporting a failed attempt to the repository.

    Either the job was rescheduled (run_after set) or it was moved to the
    dead letter queue.
    """

    job_id: str
    attempts: int
    moved_to_dead: bool
    run_after: datetime | None = None

    @property
    def retry_scheduled(self) -> bool:
        """Check if the job was returned to the queue for another attempt."""
        return not self.moved_to_dead
