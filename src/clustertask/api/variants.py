"""Scheduler variants: the per-scheduler part of the wrapper-script backend.

A variant only names its default wrapper script and maps its Clusterfile
table (``[cluster.<name>]``) to the extra environment variables exported to
the wrapper on submission.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Tuple

EnvironmentBuilder = Callable[[Mapping[str, Any]], Dict[str, str]]


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


def options_to_environment(*pairs: Tuple[str, str]) -> EnvironmentBuilder:
    """Build an environment builder exporting ``option`` as ``VARIABLE``.

    Only options present (and not ``None``) in the scheduler table are
    exported.

    Examples:
        >>> build = options_to_environment(("queue", "QUEUE"))
        >>> build({"queue": "long"})
        {'QUEUE': 'long'}
        >>> build({})
        {}
    """

    def build(options: Mapping[str, Any]) -> Dict[str, str]:
        env: Dict[str, str] = {}
        for option, variable in pairs:
            value = options.get(option)
            if value is not None:
                env[variable] = _format_value(value)
        return env

    return build


def no_environment(options: Mapping[str, Any]) -> Dict[str, str]:
    return {}


@dataclass(frozen=True)
class SchedulerVariant:
    """Name, default wrapper script and environment of one scheduler."""

    name: str
    script_name: str
    environment_builder: EnvironmentBuilder = no_environment

    def environment(self, options: Mapping[str, Any]) -> Dict[str, str]:
        return self.environment_builder(options)


SLURM = SchedulerVariant(
    "slurm",
    "slurm.sh",
    options_to_environment(
        ("account", "ACCOUNT"),
        ("partition", "PARTITION"),
        ("qos", "QOS"),
    ),
)

PBSPRO = SchedulerVariant(
    "pbspro",
    "pbspro.sh",
    options_to_environment(("queue", "QUEUE"), ("account", "ACCOUNT")),
)

TORQUE = SchedulerVariant(
    "torque",
    "torque.sh",
    options_to_environment(("queue", "QUEUE"), ("account", "ACCOUNT")),
)

HTCONDOR = SchedulerVariant(
    "htcondor",
    "htcondor.sh",
    options_to_environment(
        ("concurrency_limits", "CONCURRENCY_LIMITS"),
        ("nice_user", "NICE_USER"),
        ("accounting_group", "ACCOUNTING_GROUP"),
    ),
)

DUMMY = SchedulerVariant("dummy", "dummy.sh")

VARIANTS: Dict[str, SchedulerVariant] = {
    variant.name: variant for variant in (SLURM, PBSPRO, TORQUE, HTCONDOR, DUMMY)
}
