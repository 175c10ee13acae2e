"""Root application for the clustertask CLI."""

from __future__ import annotations

import sys
from typing import Annotated, Optional

import cyclopts
from rich.console import Console

from ..api import available_schedulers
from .formatters import print_cluster_info
from .jobs import status, stop
from .tasks import exec_task, submit
from .utils import get_settings

console = Console(stderr=True)


def _get_version() -> str:
    """Get package version for --version flag."""
    try:
        from importlib.metadata import version

        return version("clustertask")
    except Exception:
        return "unknown"


app = cyclopts.App(
    name="clustertask",
    help="Run workflow tasks as jobs on SLURM, PBS Pro, TORQUE or HTCondor clusters.",
    version=_get_version(),
)


@app.command(name="info")
def info(
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
) -> None:
    """Show the resolved cluster configuration (offline, no scheduler call)."""
    settings = get_settings(env=env, clusterfile=clusterfile)
    print_cluster_info(settings, available_schedulers())


app.command(submit, name="submit")
app.command(status, name="status")
app.command(stop, name="stop")
app.command(exec_task, name="exec-task", show=False)


def _handle_error(e: Exception) -> None:
    """Handle exceptions with user-friendly messages."""
    from ..errors import (
        BackendCommandError,
        BackendError,
        BackendTimeout,
        ClusterfileEnvironmentNotFoundError,
        ClusterfileError,
        ClusterfileInvalidError,
        ClusterfileNotFoundError,
        ConfigurationError,
        SubmissionError,
    )

    if isinstance(e, ClusterfileNotFoundError):
        console.print(f"[red]Error:[/red] {e}")
        console.print(
            "\n[dim]Hint: Create a Clusterfile in your project directory, "
            "or use --clusterfile to specify a path.[/dim]"
        )
    elif isinstance(e, ClusterfileEnvironmentNotFoundError):
        console.print(f"[red]Error:[/red] {e}")
        console.print(
            "\n[dim]Hint: Check the environment names defined in your Clusterfile.[/dim]"
        )
    elif isinstance(e, ClusterfileInvalidError):
        console.print(f"[red]Error:[/red] {e}")
        console.print("\n[dim]Hint: Check your Clusterfile for TOML syntax errors.[/dim]")
    elif isinstance(e, ClusterfileError):
        console.print(f"[red]Clusterfile Error:[/red] {e}")
    elif isinstance(e, ConfigurationError):
        console.print(f"[red]Configuration Error:[/red] {e}")
        console.print(
            "\n[dim]Hint: Use 'clustertask info' to display the resolved configuration.[/dim]"
        )
    elif isinstance(e, SubmissionError):
        console.print("[red]Submission Error:[/red]")
        console.print(e)
    elif isinstance(e, BackendTimeout):
        console.print(f"[red]Command Timeout:[/red] {e}")
        console.print(
            "\n[dim]Hint: Check that the scheduler responds, or raise command_timeout.[/dim]"
        )
    elif isinstance(e, BackendCommandError):
        console.print(f"[red]Command Error:[/red] {e}")
        console.print(
            "\n[dim]Hint: Verify SSH credentials and submit host connectivity.[/dim]"
        )
    elif isinstance(e, BackendError):
        console.print(f"[red]Backend Error:[/red] {e}")
    else:
        console.print(f"[red]Error:[/red] {e}")

    sys.exit(1)


def main() -> None:
    """Entry point for the clustertask CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        _handle_error(e)
