"""
Base module for clustertask scheduler backends.

This module defines the abstract base classes shared by all backends: the
scheduler backend interface used by task threads, and the command runner
interface used to execute wrapper scripts locally or on a submit host.
"""

import abc
import threading
from typing import TYPE_CHECKING, Dict, NamedTuple, Optional, Sequence

from ..status import StatusResult

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..config import ClusterSettings


class CommandResult(NamedTuple):
    """Captured output of a finished command."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def first_line(self) -> str:
        """First line of stdout, stripped ("" when stdout is empty)."""
        lines = self.stdout.splitlines()
        return lines[0].strip() if lines else ""


class CommandRunner(abc.ABC):
    """
    Abstract base class for command runners.

    A runner executes one argv and returns its captured output. A value of
    ``None`` in ``env`` removes the variable from the inherited environment.
    """

    @abc.abstractmethod
    def run(
        self,
        argv: Sequence[str],
        env: Optional[Dict[str, Optional[str]]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a command and wait for it to finish.

        Args:
            argv: Program and arguments.
            env: Variables set (or removed, when ``None``) for the command.
            timeout: Timeout in seconds, ``None`` for the runner default.

        Returns:
            CommandResult: stdout, stderr and exit code of the command.

        Raises:
            BackendTimeout: If the command does not finish in time.
            BackendCommandError: If the command cannot be executed.
        """
        pass

    @abc.abstractmethod
    def file_exists(self, path: str) -> bool:
        """Return True if ``path`` is a regular file."""
        pass

    @abc.abstractmethod
    def check_executable(self, path: str) -> bool:
        """Return True if ``path`` is a file the current user can execute."""
        pass

    def close(self) -> None:
        """Release any resource held by the runner."""


class SchedulerBackend(abc.ABC):
    """
    Abstract base class for scheduler backends.

    A backend submits one job per task to an external batch scheduler and
    answers status, stop and cleanup requests for the job ids it returned.
    All methods may be called concurrently from several task threads.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Stable identifier of the scheduler, e.g. ``"slurm"``."""
        pass

    @abc.abstractmethod
    def configure(self, settings: "ClusterSettings") -> None:
        """
        Initialize the backend from the resolved settings.

        Raises:
            ConfigurationError: If the backend cannot be used with these settings.
        """
        pass

    @abc.abstractmethod
    def submit_job(
        self,
        job_name: str,
        command: Sequence[str],
        job_dir: str,
        task_id: int,
        required_memory: int = -1,
        required_processors: int = -1,
    ) -> str:
        """
        Submit a job to the external scheduler.

        Args:
            job_name: Human readable name of the job.
            command: Command line executed by the job.
            job_dir: Existing directory the job runs in.
            task_id: Identifier of the task executed by the job.
            required_memory: Memory in MB, ignored when <= 0.
            required_processors: Number of processors, ignored when <= 0.

        Returns:
            str: The job id assigned by the scheduler.

        Raises:
            SubmissionError: If the scheduler did not accept the job.
        """
        pass

    @abc.abstractmethod
    def status_job(
        self, job_id: str, cancel_event: Optional[threading.Event] = None
    ) -> StatusResult:
        """
        Get the status of a job.

        Args:
            job_id: The ID of the job to query.
            cancel_event: Event interrupting retry sleeps when set.

        Returns:
            StatusResult: The current status of the job.

        Raises:
            StatusError: If the status cannot be obtained.
        """
        pass

    @abc.abstractmethod
    def stop_job(self, job_id: str) -> bool:
        """
        Stop a job. Failures are logged, never raised.

        Returns:
            bool: True if the scheduler accepted the stop request.
        """
        pass

    @abc.abstractmethod
    def cleanup_job(self, job_id: str) -> None:
        """Remove scheduler-side leftovers of a finished job."""
        pass

    def close(self) -> None:
        """Release any resource held by the backend, e.g. an SSH connection."""
