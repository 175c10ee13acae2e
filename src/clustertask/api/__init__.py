"""
This package provides the scheduler backends used to run tasks on
external batch schedulers, and the command runners executing their
wrapper scripts.
"""

from typing import TYPE_CHECKING, List, Optional

from .base import CommandResult, CommandRunner, SchedulerBackend
from .local import LocalCommandRunner
from .ssh import SSHCommandRunner
from .variants import VARIANTS, SchedulerVariant
from .wrapper import WrapperScriptBackend
from ..errors import ConfigurationError

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..config import ClusterSettings
    from ..emergency import EmergencyStopRegistry


def available_schedulers() -> List[str]:
    """Return the names accepted by :func:`create_backend`."""
    return sorted(VARIANTS)


def create_backend(
    name: str,
    registry: Optional["EmergencyStopRegistry"] = None,
    runner: Optional[CommandRunner] = None,
) -> SchedulerBackend:
    """
    Create a scheduler backend by name.

    Args:
        name: The scheduler name (``slurm``, ``pbspro``, ``torque``,
            ``htcondor`` or ``dummy``), case insensitive.
        registry: Emergency-stop registry the backend reports jobs to.
        runner: Command runner executing the wrapper script.

    Returns:
        An unconfigured scheduler backend.

    Raises:
        ConfigurationError: If the scheduler name is not supported.
    """
    variant = VARIANTS.get(name.strip().lower())
    if variant is None:
        raise ConfigurationError(
            f"Unknown cluster scheduler: {name!r}. "
            f"Supported schedulers: {', '.join(available_schedulers())}"
        )
    return WrapperScriptBackend(variant, registry=registry, runner=runner)


def backend_from_settings(
    settings: "ClusterSettings",
    registry: Optional["EmergencyStopRegistry"] = None,
) -> SchedulerBackend:
    """
    Create and configure the backend described by ``settings``.

    The SSH runner is used when ``[cluster.ssh]`` names a submit host.
    """
    runner: CommandRunner
    if settings.uses_ssh:
        runner = SSHCommandRunner.from_settings(settings.ssh)
    else:
        runner = LocalCommandRunner()
    backend = create_backend(settings.scheduler, registry=registry, runner=runner)
    backend.configure(settings)
    return backend


__all__ = [
    "CommandResult",
    "CommandRunner",
    "LocalCommandRunner",
    "SSHCommandRunner",
    "SchedulerBackend",
    "SchedulerVariant",
    "WrapperScriptBackend",
    "available_schedulers",
    "backend_from_settings",
    "create_backend",
]
