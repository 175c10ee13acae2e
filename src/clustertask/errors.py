"""Custom error types for clustertask."""

from __future__ import annotations

from typing import Any, Dict, Optional

from rich.console import Console


class ConfigurationError(Exception):
    """Raised when the scheduler cannot be configured.

    Configuration errors are fatal: they are raised at backend-configuration
    time (or on first use of a wrapper script) and are never retried.

    Common causes:
        - Unknown scheduler name in the Clusterfile
        - Wrapper script missing or not executable
        - Invalid value type for a setting (e.g. memory given as text)

    What to check:
        - Run ``clustertask info`` to display the resolved configuration
        - Verify the ``wrapper_script`` path exists on the submit host
        - Ensure the script has the executable bit set (``chmod +x``)
    """


class ClusterfileError(ConfigurationError):
    """Base class for Clusterfile errors.

    Clusterfiles are TOML configuration files that define the scheduler,
    wrapper scripts and memory defaults for one or more environments.
    """


class ClusterfileNotFoundError(ClusterfileError):
    """Raised when a Clusterfile cannot be located.

    The search looks for Clusterfile, Clusterfile.toml, clusterfile or
    clusterfile.toml in the current directory and its parents.

    What to check:
        - Ensure a Clusterfile exists in your project
        - Set the CLUSTERFILE environment variable to an explicit path
    """


class ClusterfileInvalidError(ClusterfileError):
    """Raised when a Clusterfile contains invalid TOML syntax or schema."""


class ClusterfileEnvironmentNotFoundError(ClusterfileError):
    """Raised when a requested environment is missing from the Clusterfile.

    Examples:
        >>> load_settings(env="producton")  # Typo!
        ClusterfileEnvironmentNotFoundError: Environment 'producton' not defined in Clusterfile.
    """


class BackendError(Exception):
    """Base class for errors originating from the command transport.

    Subclasses represent specific failure modes (timeouts, command errors).
    """


class BackendTimeout(BackendError, TimeoutError):
    """Raised when a wrapper script invocation times out.

    What to check:
        - Verify the scheduler commands respond (``squeue``, ``qstat``,
          ``condor_q``)
        - Increase ``command_timeout`` if the scheduler is legitimately slow
    """


class BackendCommandError(BackendError):
    """Raised when a command cannot be executed at all.

    The process could not be started, or the SSH channel failed. A command
    that runs and exits non-zero is not a BackendCommandError; callers decide
    what a non-zero exit code means.
    """


class SubmissionError(Exception):
    """Raised when a job submission to the external scheduler fails.

    The submission wrapper exited with a non-zero code or did not print a
    job id. Submission errors are task-level failures and are not retried by
    the scheduler; retry policy belongs to the workflow engine.

    Attributes:
        message: Error description
        metadata: Dictionary with submission context (scheduler, job name, ...)
    """

    def __init__(
        self,
        message: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.metadata = metadata or {}

    def __str__(self) -> str:
        if not self.metadata:
            return self.message
        formatted = ", ".join(f"{key}={value}" for key, value in self.metadata.items())
        return f"{self.message} ({formatted})"

    def __rich_console__(self, console: Console, options):  # pragma: no cover
        yield f"[red]{self.message}[/red]"
        for key, value in self.metadata.items():
            yield f"  [dim]{key}[/dim] = {value}"


class StatusError(BackendError):
    """Raised when the status of a job cannot be obtained.

    Either the status wrapper exited with a non-zero code, or it kept
    returning blank output until the attempt ceiling was reached.
    """


class StatusProtocolError(StatusError):
    """Raised when a status line does not follow the wrapper protocol.

    Malformed lines (unknown state, COMPLETE without a numeric exit code)
    are genuine protocol violations and are never retried.
    """


class TaskExecutionError(Exception):
    """Raised when a remote task finished unsuccessfully.

    Attributes:
        task_id: Identifier of the failed task
        step_id: Identifier of the step the task belongs to
        exit_code: Exit code reported by the scheduler, if any
    """

    def __init__(
        self,
        message: str,
        *,
        task_id: Optional[int] = None,
        step_id: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.step_id = step_id
        self.exit_code = exit_code


class MissingDoneMarkerError(TaskExecutionError):
    """Raised when the scheduler reports completion but no done marker exists.

    The remote worker writes the done marker after the result files. Its
    absence means the scheduler view of the job is inconsistent with what the
    worker actually finished, so the result files cannot be trusted.

    What to check:
        - The task log (``<prefix>.log``) and wrapper output
          (``<job name>.out`` / ``<job name>.err``) in the task directory
        - Whether the task directory is on a filesystem shared with the
          compute nodes
    """


class TaskCancelledError(Exception):
    """Raised inside a task thread when its cancellation was requested."""
