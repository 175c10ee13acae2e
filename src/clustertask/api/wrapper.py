"""
Wrapper-script scheduler backend.

Every supported scheduler is driven through the same small protocol: an
executable wrapper script called with one of three sub-commands.

``<wrapper> start``
    Submits a job described by environment variables (``NAME``,
    ``COMMAND``, ``JOBDIR``, ``CLUSTERTASK_TASK_ID``, optional ``MEMORY`` in
    GB and ``PROCS``, plus the variables of the scheduler variant) and
    prints the job id on its first stdout line.

``<wrapper> status <job id>``
    Prints ``WAITING``, ``RUNNING``, ``UNKNOWN`` or ``COMPLETE <exit code>``.

``<wrapper> stop <job id>``
    Asks the scheduler to kill the job.

The scheduler-specific knowledge lives in the script, so a site can adapt
submission options without touching Python code.
"""

import logging
import math
import shlex
import threading
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from .base import CommandResult, CommandRunner, SchedulerBackend
from .local import LocalCommandRunner
from .variants import SchedulerVariant
from ..errors import (
    BackendError,
    ConfigurationError,
    StatusError,
    SubmissionError,
    TaskCancelledError,
)
from ..status import JobStatus, StatusResult, parse_status_line

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..config import ClusterSettings
    from ..emergency import EmergencyStopRegistry

logger = logging.getLogger(__name__)

# Variables never forwarded to the scheduler
REMOVED_ENVIRONMENT_VARIABLES = ("DISPLAY",)


def bundled_wrapper_script(script_name: str) -> Path:
    """Return the path of a wrapper script shipped with clustertask."""
    return Path(str(resources.files("clustertask.wrappers").joinpath(script_name)))


class WrapperScriptBackend(SchedulerBackend):
    """
    Scheduler backend that delegates every operation to a wrapper script.

    Args:
        variant: Scheduler variant providing the name, default script and
            extra submission variables.
        registry: Emergency-stop registry updated on submission and completion.
        runner: Command runner executing the script (local by default).
    """

    def __init__(
        self,
        variant: SchedulerVariant,
        registry: Optional["EmergencyStopRegistry"] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.variant = variant
        self.registry = registry
        self.runner = runner or LocalCommandRunner()

        self._submit_lock = threading.Lock()
        self._script_argv: Optional[List[str]] = None
        self._options: Dict[str, Any] = {}
        self._timeout: Optional[float] = None
        self._status_retry_delay = 5.0
        self._max_status_attempts = 3

    @property
    def name(self) -> str:
        return self.variant.name

    @property
    def configured(self) -> bool:
        return self._script_argv is not None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    def configure(self, settings: "ClusterSettings") -> None:
        if settings.wrapper_script is not None:
            script = str(settings.wrapper_script)
            if not self.runner.file_exists(script):
                raise ConfigurationError(
                    f"Wrapper script for the {self.name} scheduler not found: {script}\n"
                    f"Set cluster.wrapper_script in your Clusterfile to an existing file."
                )
            if not self.runner.check_executable(script):
                raise ConfigurationError(
                    f"Wrapper script for the {self.name} scheduler is not executable: {script}\n"
                    f"Fix it with: chmod +x {script}"
                )
            script_argv = [script]
        else:
            # Package data may lose its mode bits on install, so run it through sh
            script = str(bundled_wrapper_script(self.variant.script_name))
            if not self.runner.file_exists(script):
                raise ConfigurationError(
                    f"Bundled wrapper script for the {self.name} scheduler not found: {script}"
                )
            script_argv = ["/bin/sh", script]

        self._options = dict(settings.scheduler_options)
        self._timeout = settings.command_timeout
        self._status_retry_delay = settings.status_retry_delay
        self._max_status_attempts = settings.max_status_attempts
        self._script_argv = script_argv
        logger.debug("%s backend uses wrapper script %s", self.name, script)

    def _run_script(self, *args: str, env: Optional[Dict[str, Optional[str]]] = None) -> CommandResult:
        if self._script_argv is None:
            raise ConfigurationError(
                f"The {self.name} backend must be configured before use."
            )
        return self.runner.run(self._script_argv + list(args), env=env, timeout=self._timeout)

    def submission_environment(
        self,
        job_name: str,
        command: Sequence[str],
        job_dir: str,
        task_id: int,
        required_memory: int = -1,
        required_processors: int = -1,
    ) -> Dict[str, Optional[str]]:
        """Build the environment of ``<wrapper> start``."""
        env: Dict[str, Optional[str]] = {
            name: None for name in REMOVED_ENVIRONMENT_VARIABLES
        }
        env["NAME"] = job_name
        env["COMMAND"] = shlex.join(command)
        env["JOBDIR"] = str(job_dir)
        env["CLUSTERTASK_TASK_ID"] = str(task_id)

        if required_memory > 0:
            # Wrappers receive GB, rounded up
            env["MEMORY"] = str(math.ceil(required_memory / 1024))
        if required_processors > 0:
            env["PROCS"] = str(required_processors)

        env.update(self.variant.environment(self._options))
        return env

    def submit_job(
        self,
        job_name: str,
        command: Sequence[str],
        job_dir: str,
        task_id: int,
        required_memory: int = -1,
        required_processors: int = -1,
    ) -> str:
        if not Path(job_dir).is_dir():
            raise ValueError(f"Job directory does not exist: {job_dir}")

        env = self.submission_environment(
            job_name, command, job_dir, task_id, required_memory, required_processors
        )
        metadata = {"scheduler": self.name, "job_name": job_name, "task_id": task_id}

        with self._submit_lock:
            logger.debug("Submitting job %s with %s", job_name, self.name)
            try:
                result = self._run_script("start", env=env)
            except BackendError as e:
                raise SubmissionError(
                    f"Error while submitting job {job_name}: {e}", metadata=metadata
                ) from e

        if result.returncode != 0:
            metadata["exit_code"] = result.returncode
            if result.stderr.strip():
                metadata["stderr"] = result.stderr.strip()[:500]
            raise SubmissionError(
                f"Error while submitting job {job_name}, the {self.name} "
                f"wrapper exited with code {result.returncode}",
                metadata=metadata,
            )

        job_id = result.first_line
        if not job_id:
            raise SubmissionError(
                f"Error while submitting job {job_name}, the {self.name} "
                f"wrapper did not return a job id",
                metadata=metadata,
            )

        if self.registry is not None:
            self.registry.add(self, job_id)
        logger.info("Job %s submitted to %s with id %s", job_name, self.name, job_id)
        return job_id

    def _wait_before_retry(self, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is None:
            cancel_event = threading.Event()
        if cancel_event.wait(self._status_retry_delay):
            raise TaskCancelledError("Status retry interrupted by cancellation")

    def status_job(
        self, job_id: str, cancel_event: Optional[threading.Event] = None
    ) -> StatusResult:
        for attempt in range(1, self._max_status_attempts + 1):
            try:
                result = self._run_script("status", job_id)
            except BackendError as e:
                raise StatusError(
                    f"Error while getting status of job {job_id}: {e}"
                ) from e

            if result.returncode != 0:
                raise StatusError(
                    f"Error while getting status of job {job_id}, the {self.name} "
                    f"wrapper exited with code {result.returncode}: "
                    f"{result.stderr.strip()}"
                )

            line = result.first_line
            if line:
                if line.split()[0] == JobStatus.COMPLETE.value and self.registry is not None:
                    self.registry.remove(job_id)
                return parse_status_line(job_id, line)

            logger.debug(
                "Empty status output for job %s (attempt %d/%d)",
                job_id,
                attempt,
                self._max_status_attempts,
            )
            if attempt < self._max_status_attempts:
                self._wait_before_retry(cancel_event)

        raise StatusError(
            f"Job status failed for job {job_id} after "
            f"{self._max_status_attempts} attempts"
        )

    def stop_job(self, job_id: str) -> bool:
        try:
            result = self._run_script("stop", job_id)
        except (BackendError, ConfigurationError) as e:
            logger.warning("Error while stopping job %s: %s", job_id, e)
            return False

        if result.returncode != 0:
            logger.warning(
                "Error while stopping job %s, the %s wrapper exited with code %d: %s",
                job_id,
                self.name,
                result.returncode,
                result.stderr.strip(),
            )
            return False

        logger.info("Stop requested for job %s", job_id)
        return True

    def cleanup_job(self, job_id: str) -> None:
        pass

    def close(self) -> None:
        self.runner.close()
