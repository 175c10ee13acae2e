"""Cluster task scheduler: the coordinator of the task threads.

The workflow engine hands runnable tasks to :meth:`ClusterTaskScheduler.submit`.
Each task gets its own :class:`~clustertask.thread.TaskThread`; the
scheduler keeps per-step counters of submitted, running and done tasks,
collects results, and can stop every in-flight task at once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
)

from .arbiter import StatusPollArbiter
from .callbacks import BaseCallback, CompletedContext, run_callbacks
from .task import TaskContext, TaskResult
from .thread import TaskThread

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .api.base import SchedulerBackend
    from .config import ClusterSettings
    from .emergency import EmergencyStopRegistry

logger = logging.getLogger(__name__)

ResultCollector = Callable[[TaskContext, TaskResult], None]


class ClusterTaskScheduler:
    """Dispatch tasks to an external batch scheduler, one job per task.

    Args:
        backend: Configured scheduler backend.
        settings: Cluster settings shared by all task threads.
        registry: Emergency-stop registry the backend reports jobs to.
        collector: Called once per task with its final result, typically
            the workflow engine consuming results.
        callbacks: Lifecycle callbacks, in addition to ``settings.callbacks``.
        arbiter: Status poll arbiter (a new one is created by default).

    Example:
        >>> registry = EmergencyStopRegistry()
        >>> backend = backend_from_settings(settings, registry)
        >>> with ClusterTaskScheduler(backend, settings, registry) as scheduler:
        ...     scheduler.submit_all(contexts)
        ...     scheduler.wait_end_of_tasks("map_reads")
        ...     results = scheduler.get_results("map_reads")
    """

    def __init__(
        self,
        backend: "SchedulerBackend",
        settings: "ClusterSettings",
        registry: Optional["EmergencyStopRegistry"] = None,
        collector: Optional[ResultCollector] = None,
        callbacks: Optional[List[BaseCallback]] = None,
        arbiter: Optional[StatusPollArbiter] = None,
    ) -> None:
        self.backend = backend
        self.settings = settings
        self.registry = registry
        self.collector = collector
        self.callbacks: List[BaseCallback] = list(settings.callbacks) + list(
            callbacks or []
        )
        self.arbiter = arbiter or StatusPollArbiter(settings.status_poll_interval)

        self._lock = threading.RLock()
        self._active: Dict[int, TaskThread] = {}
        self._threads: List[TaskThread] = []
        self._steps: Dict[int, str] = {}
        self._submitted: Dict[str, Set[int]] = defaultdict(set)
        self._running: Dict[str, Set[int]] = defaultdict(set)
        self._done: Dict[str, Set[int]] = defaultdict(set)
        self._results: Dict[str, Dict[int, TaskResult]] = defaultdict(dict)

        self._started = False
        self._stopped = threading.Event()

    def __repr__(self) -> str:
        return (
            f"ClusterTaskScheduler(backend={self.backend.name!r}, "
            f"submitted={self.submitted_count()}, running={self.running_count()}, "
            f"done={self.done_count()})"
        )

    # Lifecycle

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    def _check_execution_state(self) -> None:
        if not self._started:
            raise RuntimeError("The scheduler is not started")
        if self._stopped.is_set():
            raise RuntimeError("The scheduler is stopped")

    def start(self) -> None:
        if self._stopped.is_set():
            raise RuntimeError("The scheduler is stopped")
        with self._lock:
            self._started = True
        logger.debug("Scheduler started with the %s backend", self.backend.name)

    def stop(self) -> None:
        """Stop the scheduler and every active task thread.

        Stop requests are sent without waiting for the threads to end; use
        :meth:`join` to wait for them.
        """
        self._check_execution_state()
        with self._lock:
            self._stopped.set()
            threads = list(self._active.values())
            self._active.clear()

        if threads:
            logger.info("Stopping %d active task(s)", len(threads))
        for thread in threads:
            thread.stop_thread()

    def __enter__(self) -> "ClusterTaskScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._started and not self._stopped.is_set():
            self.stop()

    # Submission

    def submit(self, context: TaskContext) -> TaskThread:
        """Start a task thread executing ``context``.

        Raises:
            RuntimeError: If the scheduler is not started or already stopped.
            ValueError: If a task with the same id was already submitted.
        """
        self._check_execution_state()

        with self._lock:
            if context.task_id in self._steps:
                raise ValueError(
                    f"The task (#{context.task_id}) has been already submitted"
                )
            context.task_dir.mkdir(parents=True, exist_ok=True)

            thread = TaskThread(
                context,
                self.backend,
                self.arbiter,
                self.settings,
                on_finished=self._task_finished,
                callbacks=self.callbacks,
                registry=self.registry,
            )
            self._steps[context.task_id] = context.step_id
            self._submitted[context.step_id].add(context.task_id)
            self._running[context.step_id].add(context.task_id)
            self._active[context.task_id] = thread
            self._threads.append(thread)

        logger.debug(
            "Task #%d (step %s) has been submitted", context.task_id, context.step_id
        )
        thread.start()
        return thread

    def submit_all(self, contexts: Iterable[TaskContext]) -> List[TaskThread]:
        return [self.submit(context) for context in contexts]

    def _task_finished(self, thread: TaskThread, result: TaskResult) -> None:
        context = thread.context

        if self.collector is not None:
            try:
                self.collector(context, result)
            except Exception:
                logger.exception(
                    "Result collector failed for task #%d", context.task_id
                )

        run_callbacks(
            self.callbacks,
            "on_task_completed_ctx",
            CompletedContext(
                context=context,
                result=result,
                job_id=thread.job_id,
                final_state=thread.state.value,
            ),
        )

        with self._lock:
            self._results[context.step_id][context.task_id] = result
            self._running[context.step_id].discard(context.task_id)
            self._done[context.step_id].add(context.task_id)
            self._active.pop(context.task_id, None)

        logger.debug(
            "Task #%d (step %s) is done", context.task_id, context.step_id
        )

    # Waiting

    def active_threads(self) -> List[TaskThread]:
        with self._lock:
            return list(self._active.values())

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the submitted task threads to end.

        Returns:
            bool: True if every thread ended before the timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        # Stopped threads left the active set but may still be running
        with self._lock:
            threads = [t for t in self._threads if t.is_alive()]
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in threads)

    def wait_end_of_tasks(
        self, step_id: Optional[str] = None, poll_interval: float = 0.5
    ) -> None:
        """Block until all the tasks (of ``step_id``) are done or the scheduler stops."""
        self._check_execution_state()
        while not self._stopped.is_set() and (
            self.running_count(step_id) > 0
            or self.submitted_count(step_id) > self.done_count(step_id)
        ):
            self._stopped.wait(poll_interval)

    # Counters

    def _count(self, table: Dict[str, Set[int]], step_id: Optional[str]) -> int:
        with self._lock:
            if step_id is None:
                return sum(len(ids) for ids in table.values())
            return len(table.get(step_id, ()))

    def submitted_count(self, step_id: Optional[str] = None) -> int:
        return self._count(self._submitted, step_id)

    def running_count(self, step_id: Optional[str] = None) -> int:
        return self._count(self._running, step_id)

    def done_count(self, step_id: Optional[str] = None) -> int:
        return self._count(self._done, step_id)

    def get_results(self, step_id: str) -> Dict[int, TaskResult]:
        """Results of the finished tasks of ``step_id``, by task id."""
        with self._lock:
            return dict(self._results.get(step_id, {}))

    def steps(self) -> List[str]:
        with self._lock:
            return list(self._submitted)
