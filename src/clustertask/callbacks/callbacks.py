"""Core callback types and lifecycle contexts for clustertask."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from rich.console import Console

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..status import StatusResult
    from ..task import TaskContext, TaskResult


@dataclass
class SubmitEndContext:
    """Context emitted right after a task was accepted by the scheduler."""

    context: "TaskContext"
    job_id: str
    scheduler: str
    required_memory: int
    required_processors: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class JobStatusUpdatedContext:
    """Context emitted when the polled status of a job changes."""

    context: "TaskContext"
    job_id: str
    status: "StatusResult"
    previous_status: Optional["StatusResult"] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_complete


@dataclass
class CompletedContext:
    """Context emitted once per task with its final result."""

    context: "TaskContext"
    result: "TaskResult"
    job_id: Optional[str] = None
    final_state: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class BaseCallback:
    """Base class for task lifecycle callbacks."""

    def on_task_submitted_ctx(
        self, ctx: SubmitEndContext
    ) -> None:  # pragma: no cover - default no-op
        pass

    def on_job_status_update_ctx(
        self, ctx: JobStatusUpdatedContext
    ) -> None:  # pragma: no cover - default no-op
        pass

    def on_task_completed_ctx(
        self, ctx: CompletedContext
    ) -> None:  # pragma: no cover - default no-op
        pass


def run_callbacks(
    callbacks: List[BaseCallback], method_name: str, *args, **kwargs
) -> None:
    """Run a specific method on a list of callbacks, catching errors.

    One callback failing never prevents the others from running, and never
    breaks the task thread that emitted the event.
    """
    for callback in callbacks:
        try:
            method = getattr(callback, method_name)
            method(*args, **kwargs)
        except Exception as e:
            logging.getLogger(__name__).warning(
                "Error executing callback %s.%s: %s",
                type(callback).__name__,
                method_name,
                e,
            )


class LoggerCallback(BaseCallback):
    """Log lifecycle transitions using standard Python logging."""

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def on_task_submitted_ctx(self, ctx: SubmitEndContext) -> None:
        self.logger.info(
            "Task #%d (step %s) submitted as job %s on %s (memory=%sMB, procs=%s)",
            ctx.context.task_id,
            ctx.context.step_id,
            ctx.job_id,
            ctx.scheduler,
            ctx.required_memory if ctx.required_memory > 0 else "default",
            ctx.required_processors if ctx.required_processors > 0 else "default",
        )

    def on_job_status_update_ctx(self, ctx: JobStatusUpdatedContext) -> None:
        self.logger.info("[%s] status=%s", ctx.job_id, ctx.status)

    def on_task_completed_ctx(self, ctx: CompletedContext) -> None:
        duration = ctx.result.duration
        timing = f" in {duration:.2f}s" if duration is not None else ""
        if ctx.result.success:
            self.logger.info(
                "Task #%d (step %s) succeeded%s",
                ctx.context.task_id,
                ctx.context.step_id,
                timing,
            )
        else:
            self.logger.error(
                "Task #%d (step %s) failed%s: %s",
                ctx.context.task_id,
                ctx.context.step_id,
                timing,
                ctx.result.error_message,
            )


class RichLoggerCallback(BaseCallback):
    """Print lifecycle transitions with rich formatting.

    Args:
        console: Optional rich Console instance. If not provided, creates a new one.
    """

    _STATUS_STYLES: Dict[str, str] = {
        "WAITING": "yellow",
        "RUNNING": "cyan",
        "COMPLETE": "green",
        "UNKNOWN": "magenta",
    }

    def __init__(self, *, console: Optional[Console] = None) -> None:
        self.console = console or Console(stderr=True)

    def on_task_submitted_ctx(self, ctx: SubmitEndContext) -> None:
        self.console.print(
            f"[cyan]Submitted[/cyan] task #{ctx.context.task_id} "
            f"([bold]{ctx.context.step_id}[/bold]) as job {ctx.job_id} "
            f"on {ctx.scheduler}"
        )

    def on_job_status_update_ctx(self, ctx: JobStatusUpdatedContext) -> None:
        style = self._STATUS_STYLES.get(ctx.status.status.value, "white")
        self.console.print(
            f"  [dim]{ctx.job_id}[/dim] [{style}]{ctx.status}[/{style}]"
        )

    def on_task_completed_ctx(self, ctx: CompletedContext) -> None:
        label = f"task #{ctx.context.task_id} ([bold]{ctx.context.step_id}[/bold])"
        if ctx.result.success:
            self.console.print(f"[green]✓[/green] {label} done")
        else:
            self.console.print(
                f"[red]✗[/red] {label} failed: {ctx.result.error_message}"
            )
