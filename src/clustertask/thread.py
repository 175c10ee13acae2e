"""One thread per in-flight task.

A :class:`TaskThread` owns exactly one remote job. It serializes the task
context, submits the worker command through the scheduler backend, polls
the job status in turn with the other threads, loads the result written by
the worker and reports exactly one :class:`~clustertask.task.TaskResult`,
whatever happened.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional

from .callbacks import (
    BaseCallback,
    JobStatusUpdatedContext,
    SubmitEndContext,
    run_callbacks,
)
from .errors import MissingDoneMarkerError, TaskCancelledError, TaskExecutionError
from .status import StatusResult
from .task import TaskContext, TaskResult, read_output_data

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .api.base import SchedulerBackend
    from .arbiter import StatusPollArbiter
    from .config import ClusterSettings
    from .emergency import EmergencyStopRegistry

logger = logging.getLogger(__name__)

TaskFinishedHandler = Callable[["TaskThread", TaskResult], None]


class TaskState(str, Enum):
    CREATED = "CREATED"
    SUBMITTING = "SUBMITTING"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"

    @property
    def is_finished(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED, TaskState.STOPPED)


class TaskThread(threading.Thread):
    """Submit one task, wait for its job and report its result.

    Args:
        context: The task to execute remotely.
        backend: Configured scheduler backend.
        arbiter: Arbiter shared by all the task threads of a scheduler.
        settings: Cluster settings (memory defaults, poll interval, entry point).
        on_finished: Called exactly once with the final result.
        callbacks: Lifecycle callbacks notified of submission and status changes.
        registry: Emergency-stop registry cleared when the thread stops its job.
    """

    def __init__(
        self,
        context: TaskContext,
        backend: "SchedulerBackend",
        arbiter: "StatusPollArbiter",
        settings: "ClusterSettings",
        on_finished: Optional[TaskFinishedHandler] = None,
        callbacks: Optional[List[BaseCallback]] = None,
        registry: Optional["EmergencyStopRegistry"] = None,
    ) -> None:
        super().__init__(
            daemon=True,
            name=f"clustertask-{context.task_prefix}",
        )
        self.context = context
        self.backend = backend
        self.arbiter = arbiter
        self.settings = settings
        self.on_finished = on_finished
        self.callbacks = list(callbacks or [])
        self.registry = registry

        self.cancel_event = threading.Event()
        self.state = TaskState.CREATED
        self.job_id: Optional[str] = None
        self.status: Optional[StatusResult] = None
        self.result: Optional[TaskResult] = None
        self._job_lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"TaskThread(task_id={self.context.task_id}, "
            f"step_id={self.context.step_id!r}, state={self.state.value}, "
            f"job_id={self.job_id!r})"
        )

    @property
    def required_memory(self) -> int:
        """Memory in MB requested for the job.

        The task requirement wins, then the cluster default, then the memory
        of the application itself.
        """
        if self.context.required_memory > 0:
            return self.context.required_memory
        if self.settings.default_memory > 0:
            return self.settings.default_memory
        return self.settings.application_memory

    def build_command(self) -> List[str]:
        """Serialize the context and return the worker command line."""
        context_file = self.context.serialize()

        command = list(self.settings.entry_point)
        command.append("exec-task")
        command.extend(["--workdir", os.getcwd()])
        if self.settings.log_level:
            command.extend(["--log-level", self.settings.log_level])
        command.append(str(context_file.absolute()))
        return command

    def _write_job_id_file(self, job_id: str) -> None:
        self.context.job_id_file.write_text(job_id + "\n")

    def _load_result(self) -> TaskResult:
        ctx = self.context
        if not ctx.done_file.exists():
            raise MissingDoneMarkerError(
                f"No done file found for task #{ctx.task_id} in step {ctx.step_id}",
                task_id=ctx.task_id,
                step_id=ctx.step_id,
            )

        output = read_output_data(ctx.data_file)
        result = TaskResult.deserialize(ctx.result_file)
        result.output = output
        return result

    def _load_failed_result(self, exit_code: int) -> TaskResult:
        """Result of a job that exited with ``exit_code`` != 0.

        The worker may have written a failed result before the job died; its
        error and log are kept. Otherwise the exit code is all there is.
        """
        ctx = self.context
        message = (
            f"Invalid task exit code: {exit_code} "
            f"for task #{ctx.task_id} in step {ctx.step_id}"
        )
        if ctx.done_file.exists():
            try:
                result = self._load_result()
            except Exception as e:
                logger.warning("Unable to load the result of task #%d: %s", ctx.task_id, e)
            else:
                if not result.success:
                    if result.error_message:
                        message = f"{message}: {result.error_message}"
                    result.error_message = message
                    return result
        raise TaskExecutionError(
            message,
            task_id=ctx.task_id,
            step_id=ctx.step_id,
            exit_code=exit_code,
        )

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise TaskCancelledError(
                f"Task #{self.context.task_id} in step {self.context.step_id} was stopped"
            )

    def submit(self) -> str:
        """Serialize the context and submit its job.

        Returns:
            str: The job id, also written to the job id file.
        """
        ctx = self.context
        command = self.build_command()
        required_memory = self.required_memory

        job_id = self.backend.submit_job(
            ctx.job_name,
            command,
            str(ctx.task_dir),
            ctx.task_id,
            required_memory,
            ctx.required_processors,
        )

        with self._job_lock:
            self.job_id = job_id
            stop_requested = self.cancel_event.is_set()
        if stop_requested:
            # stop_thread() ran before the job id was known
            self._stop_job(job_id)
            self._check_cancelled()

        self._write_job_id_file(job_id)
        run_callbacks(
            self.callbacks,
            "on_task_submitted_ctx",
            SubmitEndContext(
                context=ctx,
                job_id=job_id,
                scheduler=self.backend.name,
                required_memory=required_memory,
                required_processors=ctx.required_processors,
            ),
        )
        return job_id

    def _poll_until_complete(self, job_id: str) -> StatusResult:
        previous: Optional[StatusResult] = None
        while True:
            self._check_cancelled()
            with self.arbiter.turn(self, self.cancel_event):
                status = self.backend.status_job(job_id, cancel_event=self.cancel_event)
            self.status = status

            if status != previous:
                logger.debug("Job %s is %s", job_id, status)
                run_callbacks(
                    self.callbacks,
                    "on_job_status_update_ctx",
                    JobStatusUpdatedContext(
                        context=self.context,
                        job_id=job_id,
                        status=status,
                        previous_status=previous,
                    ),
                )
            previous = status

            if status.is_complete:
                return status
            if self.cancel_event.wait(self.settings.status_poll_interval):
                self._check_cancelled()

    def run(self) -> None:
        ctx = self.context
        start_time = time.time()
        result: Optional[TaskResult] = None
        try:
            self.state = TaskState.SUBMITTING
            self._check_cancelled()
            job_id = self.submit()

            self.state = TaskState.POLLING
            status = self._poll_until_complete(job_id)

            if status.exit_code != 0:
                result = self._load_failed_result(status.exit_code)
            else:
                result = self._load_result()
        except TaskCancelledError as e:
            logger.info("Task #%d in step %s stopped", ctx.task_id, ctx.step_id)
            result = TaskResult.from_exception(ctx, e, start_time=start_time)
        except Exception as e:
            logger.error(
                "Task #%d in step %s failed: %s", ctx.task_id, ctx.step_id, e
            )
            result = TaskResult.from_exception(ctx, e, start_time=start_time)
        finally:
            if result is None:
                result = TaskResult.from_exception(
                    ctx,
                    TaskExecutionError(
                        f"Result is null for task #{ctx.task_id} in step {ctx.step_id}",
                        task_id=ctx.task_id,
                        step_id=ctx.step_id,
                    ),
                    start_time=start_time,
                )

            if result.success:
                self.state = TaskState.COMPLETED
            elif self.cancel_event.is_set():
                self.state = TaskState.STOPPED
            else:
                self.state = TaskState.FAILED
            self.result = result

            if self.on_finished is not None:
                try:
                    self.on_finished(self, result)
                except Exception:
                    logger.exception(
                        "Error while reporting the result of task #%d", ctx.task_id
                    )

    def _stop_job(self, job_id: str) -> None:
        try:
            self.backend.stop_job(job_id)
        except Exception as e:
            logger.warning("Error while stopping job %s: %s", job_id, e)
        if self.registry is not None:
            self.registry.remove(job_id)

    def stop_thread(self) -> None:
        """Request the thread to stop and kill its job.

        Non-blocking: the thread notices the request at its next wait and
        reports a cancelled result.
        """
        with self._job_lock:
            self.cancel_event.set()
            job_id = self.job_id
        if job_id is None or self.state.is_finished:
            return
        if self.registry is not None and job_id not in self.registry:
            # Already stopped by the registry, or seen complete
            logger.debug("Job %s is no longer registered, not stopping it", job_id)
            return
        self._stop_job(job_id)
