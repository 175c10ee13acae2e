"""Rich output formatters for the clustertask CLI."""

from __future__ import annotations

from typing import Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import ClusterSettings
from ..status import StatusResult
from ..task import TaskResult

console = Console()

STATUS_COLORS: Dict[str, str] = {
    "WAITING": "yellow",
    "RUNNING": "green",
    "COMPLETE": "blue",
    "UNKNOWN": "magenta",
}


def print_cluster_info(settings: ClusterSettings, schedulers: List[str]) -> None:
    """Display the resolved cluster configuration as a table."""
    table = Table(title=f"Cluster configuration ({settings.env_name})")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for name, value in settings.info():
        table.add_row(name, value)
    if settings.source is not None:
        table.add_row("Clusterfile", str(settings.source))
    table.add_row("Supported schedulers", ", ".join(schedulers))

    console.print(table)


def print_status(job_id: str, status: StatusResult) -> None:
    color = STATUS_COLORS.get(status.status.value, "white")
    console.print(f"[cyan]{job_id}[/cyan] [{color}]{status}[/{color}]")


def print_task_result(result: TaskResult) -> None:
    """Display the outcome of a task in a panel."""
    lines = [
        f"[bold]Task:[/bold] #{result.task_id}",
        f"[bold]Step:[/bold] {result.step_id}",
    ]
    if result.duration is not None:
        lines.append(f"[bold]Duration:[/bold] {result.duration:.2f}s")

    if result.success:
        lines.append(f"[bold]Output:[/bold] {result.output!r}")
        border_style = "green"
        title = "Task succeeded"
    else:
        lines.append(f"[bold]Error:[/bold] [red]{result.error_message}[/red]")
        border_style = "red"
        title = "Task failed"

    console.print(Panel("\n".join(lines), title=title, border_style=border_style))
