"""Job commands for the clustertask CLI: query and stop scheduler jobs."""

from __future__ import annotations

import sys
from typing import Annotated, List, Optional

import cyclopts
from rich.console import Console

from .formatters import print_status
from .utils import get_backend, get_settings

console = Console(stderr=True)


def status(
    job_id: Annotated[
        str,
        cyclopts.Parameter(
            help="Job id returned by the scheduler.",
        ),
    ],
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
) -> None:
    """Show the status of a job, as reported by the wrapper script."""
    settings = get_settings(env=env, clusterfile=clusterfile, scheduler=scheduler)
    backend = get_backend(settings)
    try:
        print_status(job_id, backend.status_job(job_id))
    finally:
        backend.close()


def stop(
    job_ids: Annotated[
        List[str],
        cyclopts.Parameter(
            help="Job ids to stop.",
        ),
    ],
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
) -> None:
    """Stop one or more jobs."""
    settings = get_settings(env=env, clusterfile=clusterfile, scheduler=scheduler)
    backend = get_backend(settings)
    try:
        failed = [job_id for job_id in job_ids if not backend.stop_job(job_id)]
    finally:
        backend.close()
    for job_id in job_ids:
        if job_id not in failed:
            console.print(f"[green]Stop requested[/green] for job {job_id}")
    if failed:
        console.print(f"[red]Unable to stop:[/red] {', '.join(failed)}")
        sys.exit(1)
