"""Job status model and parsing of the wrapper status protocol."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import StatusProtocolError


class JobStatus(str, Enum):
    """State of a job as reported by a status wrapper."""

    WAITING = "WAITING"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self is JobStatus.COMPLETE


@dataclass(frozen=True)
class StatusResult:
    """Status of a job, with the exit code once the job is complete."""

    status: JobStatus
    exit_code: Optional[int] = None

    def __post_init__(self) -> None:
        if self.status is JobStatus.COMPLETE and self.exit_code is None:
            raise ValueError("a COMPLETE status requires an exit code")
        if self.status is not JobStatus.COMPLETE and self.exit_code is not None:
            raise ValueError(f"{self.status.value} status cannot carry an exit code")

    @property
    def is_complete(self) -> bool:
        return self.status.is_terminal

    @property
    def is_successful(self) -> bool:
        return self.is_complete and self.exit_code == 0

    def __str__(self) -> str:
        if self.exit_code is None:
            return self.status.value
        return f"{self.status.value} {self.exit_code}"


def parse_status_line(job_id: str, line: str) -> StatusResult:
    """Parse one line of ``wrapper status <job id>`` output.

    The line holds space separated fields: ``WAITING``, ``RUNNING``,
    ``UNKNOWN`` or ``COMPLETE <exit code>``.

    Args:
        job_id: Job the line belongs to, used in error messages.
        line: Non-blank status line.

    Returns:
        StatusResult: The parsed status.

    Raises:
        StatusProtocolError: If the line does not follow the protocol.
    """
    fields = line.split()
    if not fields:
        raise StatusProtocolError(f"Empty status line for job {job_id}")

    state = fields[0]

    if state == JobStatus.COMPLETE.value:
        if len(fields) != 2:
            raise StatusProtocolError(
                f"Invalid complete string for job {job_id}: {line!r}"
            )
        try:
            exit_code = int(fields[1])
        except ValueError as e:
            raise StatusProtocolError(
                f"Invalid complete string for job {job_id}: {line!r}"
            ) from e
        return StatusResult(JobStatus.COMPLETE, exit_code)

    if state in (
        JobStatus.WAITING.value,
        JobStatus.RUNNING.value,
        JobStatus.UNKNOWN.value,
    ):
        return StatusResult(JobStatus(state))

    raise StatusProtocolError(f"Unknown status for job {job_id}: {line!r}")
