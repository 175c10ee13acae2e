"""Task commands for the clustertask CLI.

``submit`` runs one task through the configured scheduler. ``exec-task`` is
the hidden command executed by the submitted job on the compute node.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated, List, Optional

import cyclopts
from rich.console import Console

from ..arbiter import StatusPollArbiter
from ..callbacks import RichLoggerCallback
from ..emergency import EmergencyStopRegistry
from ..logging import configure_logging
from ..runner import execute_task_context
from ..scheduler import ClusterTaskScheduler
from ..task import TaskContext
from ..thread import TaskThread
from .formatters import print_task_result
from .utils import get_backend, get_settings

console = Console(stderr=True)


def submit(
    target: Annotated[
        str,
        cyclopts.Parameter(
            help="Task callable, as module:function.",
        ),
    ],
    step: Annotated[
        str,
        cyclopts.Parameter(
            name=["--step"],
            help="Step the task belongs to.",
        ),
    ] = "cli",
    task_id: Annotated[
        int,
        cyclopts.Parameter(
            name=["--task-id"],
            help="Task identifier, used in file and job names.",
        ),
    ] = 1,
    arg: Annotated[
        Optional[List[str]],
        cyclopts.Parameter(
            name=["--arg", "-a"],
            help="Positional argument passed to the callable (repeatable).",
        ),
    ] = None,
    task_dir: Annotated[
        Optional[Path],
        cyclopts.Parameter(
            name=["--task-dir", "-d"],
            help="Directory for task files, shared with the compute nodes.",
        ),
    ] = None,
    memory: Annotated[
        int,
        cyclopts.Parameter(
            name=["--memory", "-m"],
            help="Required memory in MB.",
        ),
    ] = -1,
    procs: Annotated[
        int,
        cyclopts.Parameter(
            name=["--procs", "-p"],
            help="Required processors.",
        ),
    ] = -1,
    run_id: Annotated[
        str,
        cyclopts.Parameter(
            name=["--run-id"],
            help="Run identifier prefixed to the job name.",
        ),
    ] = "clustertask",
    wait: Annotated[
        bool,
        cyclopts.Parameter(
            help="Wait for the job and print its result.",
        ),
    ] = True,
    env: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--env", "-e"],
            help="Environment name from Clusterfile.",
        ),
    ] = None,
    clusterfile: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--clusterfile", "-f"],
            help="Path to Clusterfile.",
        ),
    ] = None,
    scheduler: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--scheduler", "-s"],
            help="Scheduler name overriding the Clusterfile one.",
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--log-level"],
            help="Logging level, also passed to the remote task.",
        ),
    ] = None,
) -> None:
    """Run a Python callable as a job on the configured scheduler."""
    settings = get_settings(env=env, clusterfile=clusterfile, scheduler=scheduler)
    if log_level:
        settings.log_level = log_level.upper()
    configure_logging(settings.log_level or "WARNING")

    context = TaskContext(
        task_id=task_id,
        step_id=step,
        task_dir=(task_dir or Path.cwd() / "clustertask_tasks").absolute(),
        target=target,
        args=tuple(arg or ()),
        run_id=run_id,
        required_memory=memory,
        required_processors=procs,
    )
    context.task_dir.mkdir(parents=True, exist_ok=True)

    if not wait:
        # The job outlives this process, so it is not registered for emergency stop
        backend = get_backend(settings)
        try:
            thread = TaskThread(context, backend, StatusPollArbiter(), settings)
            job_id = thread.submit()
        finally:
            backend.close()
        console.print(f"Submitted task #{task_id} as job [cyan]{job_id}[/cyan]")
        print(job_id)
        return

    registry = EmergencyStopRegistry()
    backend = get_backend(settings, registry)
    # Closed last: the registry may still stop jobs when its block exits
    try:
        with registry, ClusterTaskScheduler(
            backend, settings, registry, callbacks=[RichLoggerCallback(console=console)]
        ) as cluster_scheduler:
            cluster_scheduler.submit(context)
            cluster_scheduler.wait_end_of_tasks(step)
            result = cluster_scheduler.get_results(step)[task_id]
    finally:
        backend.close()

    print_task_result(result)
    if not result.success:
        sys.exit(1)


def exec_task(
    context_file: Annotated[
        Path,
        cyclopts.Parameter(
            help="Serialized task context.",
        ),
    ],
    workdir: Annotated[
        Optional[Path],
        cyclopts.Parameter(
            name=["--workdir", "-w"],
            help="Working directory of the task.",
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        cyclopts.Parameter(
            name=["--log-level"],
            help="Logging level of the task.",
        ),
    ] = None,
) -> None:
    """Execute a serialized task in the current process (used by jobs)."""
    sys.exit(execute_task_context(context_file, workdir=workdir, log_level=log_level))
