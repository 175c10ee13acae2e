"""Utilities for loading and resolving Clusterfile configuration.

A Clusterfile is a TOML file describing, for one or more environments, which
external scheduler to use, where its wrapper script lives and the memory
defaults applied to submitted tasks::

    [default.cluster]
    scheduler = "slurm"
    default_memory = 8000

    [default.cluster.slurm]
    account = "genomics"
    partition = "normal"

    [bigmem.cluster]
    default_memory = 64000

    [bigmem.cluster.slurm]
    partition = "bigmem"
"""

from __future__ import annotations

import importlib
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

try:  # pragma: no cover - import guard
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - python <3.11
    import tomli as tomllib  # type: ignore[no-redef]

from .callbacks import BaseCallback
from .errors import (
    ClusterfileEnvironmentNotFoundError,
    ClusterfileInvalidError,
    ClusterfileNotFoundError,
    ConfigurationError,
)


CLUSTER_ENV_VAR = "CLUSTER_ENV"
CLUSTERFILE_ENV_VAR = "CLUSTERFILE"
DEFAULT_CLUSTERFILE_NAMES = (
    "Clusterfile",
    "Clusterfile.toml",
    "clusterfile",
    "clusterfile.toml",
)

DEFAULT_APPLICATION_MEMORY = 4096
DEFAULT_STATUS_POLL_INTERVAL = 1.0
DEFAULT_STATUS_RETRY_DELAY = 5.0
DEFAULT_MAX_STATUS_ATTEMPTS = 3
DEFAULT_COMMAND_TIMEOUT = 60.0

PathLike = Union[str, os.PathLike]


@dataclass
class ClusterSettings:
    """Resolved scheduler configuration.

    Memory values are in megabytes. A value lower or equal to zero means
    "not set".
    """

    scheduler: str = "dummy"
    wrapper_script: Optional[Path] = None
    default_memory: int = -1
    application_memory: int = DEFAULT_APPLICATION_MEMORY
    status_poll_interval: float = DEFAULT_STATUS_POLL_INTERVAL
    status_retry_delay: float = DEFAULT_STATUS_RETRY_DELAY
    max_status_attempts: int = DEFAULT_MAX_STATUS_ATTEMPTS
    command_timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT
    log_level: Optional[str] = None
    entry_point: Tuple[str, ...] = (sys.executable, "-m", "clustertask")
    scheduler_options: Dict[str, Any] = field(default_factory=dict)
    ssh: Dict[str, Any] = field(default_factory=dict)
    callbacks: List[BaseCallback] = field(default_factory=list)
    env_name: str = "default"
    source: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.wrapper_script is not None and not isinstance(self.wrapper_script, Path):
            self.wrapper_script = Path(self.wrapper_script).expanduser()
        self.entry_point = tuple(self.entry_point)
        if self.max_status_attempts < 1:
            raise ConfigurationError(
                f"max_status_attempts must be at least 1, got {self.max_status_attempts}"
            )
        if self.status_poll_interval < 0 or self.status_retry_delay < 0:
            raise ConfigurationError("Polling intervals cannot be negative.")

    @property
    def uses_ssh(self) -> bool:
        return bool(self.ssh.get("hostname"))

    def info(self) -> List[Tuple[str, str]]:
        """Return the cluster configuration rows displayed by ``clustertask info``."""
        not_set = "not set"
        rows = [
            ("Cluster scheduler", self.scheduler),
            (
                "Wrapper script",
                str(self.wrapper_script) if self.wrapper_script else "bundled",
            ),
            (
                "Default cluster memory required",
                str(self.default_memory) if self.default_memory > 0 else not_set,
            ),
            ("Application memory", str(self.application_memory)),
            ("Submit host", self.ssh.get("hostname") or "local"),
        ]
        if self.scheduler == "htcondor":
            limits = self.scheduler_options.get("concurrency_limits")
            if limits is not None:
                rows.append(("HTCondor concurrency limits", str(limits)))
        return rows


def load_settings(
    clusterfile: Optional[PathLike] = None,
    *,
    env: Optional[str] = None,
    start_dir: Optional[PathLike] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ClusterSettings:
    """Load a Clusterfile environment into :class:`ClusterSettings`."""

    resolved_path = resolve_clusterfile_path(clusterfile, start_dir=start_dir)
    raw_data = _read_toml(resolved_path)
    root_table = _extract_root_table(raw_data)
    env_table = _extract_environment_table(root_table)

    env_name = (env or os.getenv(CLUSTER_ENV_VAR) or "default").strip() or "default"
    resolved = _resolve_environment_config(root_table, env_table, env_name)

    cluster_section = resolved.get("cluster", {})
    if not isinstance(cluster_section, dict):
        raise ClusterfileInvalidError(
            f"Environment '{env_name}' in '{resolved_path}' requires a [cluster] table."
        )
    if overrides:
        cluster_section = _deep_merge(cluster_section, overrides)

    callbacks = _build_callbacks(resolved.get("callbacks"))
    return settings_from_mapping(
        cluster_section,
        callbacks=callbacks,
        env_name=env_name,
        source=resolved_path,
    )


def settings_from_mapping(
    cluster_section: Dict[str, Any],
    *,
    callbacks: Optional[List[BaseCallback]] = None,
    env_name: str = "default",
    source: Optional[Path] = None,
) -> ClusterSettings:
    """Build settings from a ``[cluster]`` table."""

    scheduler = str(cluster_section.get("scheduler", "dummy")).strip().lower()
    scheduler_options = cluster_section.get(scheduler, {})
    if not isinstance(scheduler_options, dict):
        raise ClusterfileInvalidError(
            f"[cluster.{scheduler}] must be a table of key/value pairs."
        )
    ssh = cluster_section.get("ssh", {})
    if not isinstance(ssh, dict):
        raise ClusterfileInvalidError("[cluster.ssh] must be a table of key/value pairs.")

    kwargs: Dict[str, Any] = {
        "scheduler": scheduler,
        "scheduler_options": dict(scheduler_options),
        "ssh": dict(ssh),
        "callbacks": list(callbacks or []),
        "env_name": env_name,
        "source": source,
    }

    wrapper_script = cluster_section.get("wrapper_script")
    if wrapper_script:
        path = Path(os.path.expandvars(str(wrapper_script))).expanduser()
        if not path.is_absolute() and source is not None:
            path = source.parent / path
        kwargs["wrapper_script"] = path

    for key in ("default_memory", "application_memory", "max_status_attempts"):
        if key in cluster_section:
            kwargs[key] = _as_int(key, cluster_section[key])
    for key in ("status_poll_interval", "status_retry_delay", "command_timeout"):
        if key in cluster_section:
            kwargs[key] = _as_float(key, cluster_section[key])

    if cluster_section.get("log_level"):
        kwargs["log_level"] = str(cluster_section["log_level"]).upper()

    entry_point = cluster_section.get("entry_point")
    if entry_point:
        if isinstance(entry_point, str):
            entry_point = entry_point.split()
        if not isinstance(entry_point, list) or not all(
            isinstance(part, str) for part in entry_point
        ):
            raise ClusterfileInvalidError(
                "cluster.entry_point must be a string or a list of strings."
            )
        kwargs["entry_point"] = tuple(entry_point)

    return ClusterSettings(**kwargs)


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ClusterfileInvalidError(f"cluster.{key} must be an integer, got {value!r}.")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ClusterfileInvalidError(
            f"cluster.{key} must be an integer, got {value!r}."
        ) from exc


def _as_float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ClusterfileInvalidError(
            f"cluster.{key} must be a number, got {value!r}."
        ) from exc


def resolve_clusterfile_path(
    clusterfile: Optional[PathLike] = None,
    *,
    start_dir: Optional[PathLike] = None,
) -> Path:
    """Determine which Clusterfile to use, respecting explicit hints and discovery."""

    if clusterfile is not None:
        return _normalize_clusterfile_path(Path(clusterfile))

    env_path = os.getenv(CLUSTERFILE_ENV_VAR)
    if env_path:
        return _normalize_clusterfile_path(Path(env_path))

    return discover_clusterfile(start_dir=start_dir)


def discover_clusterfile(start_dir: Optional[PathLike] = None) -> Path:
    """Search upwards from ``start_dir`` (or ``cwd``) for a Clusterfile."""

    start_candidate = Path(start_dir) if start_dir is not None else Path.cwd()
    start_candidate = start_candidate.expanduser()
    try:
        start_candidate = start_candidate.resolve()
    except FileNotFoundError:
        start_candidate = start_candidate.absolute()

    for directory in (start_candidate,) + tuple(start_candidate.parents):
        for name in DEFAULT_CLUSTERFILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate

    raise ClusterfileNotFoundError(
        f"No Clusterfile found starting from '{start_candidate}'. Checked {DEFAULT_CLUSTERFILE_NAMES}."
    )


def _normalize_clusterfile_path(path: Path) -> Path:
    expanded = path.expanduser()
    if expanded.is_dir():
        for name in DEFAULT_CLUSTERFILE_NAMES:
            candidate = expanded / name
            if candidate.is_file():
                return candidate
        raise ClusterfileNotFoundError(
            f"Clusterfile not found inside directory '{expanded}'. Checked {DEFAULT_CLUSTERFILE_NAMES}."
        )
    if expanded.is_file():
        return expanded
    raise ClusterfileNotFoundError(f"Clusterfile path '{expanded}' does not exist.")


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ClusterfileInvalidError(f"Invalid TOML in Clusterfile '{path}'.") from exc

    if not isinstance(data, dict):
        raise ClusterfileInvalidError(
            f"Clusterfile '{path}' must contain a top-level table."
        )
    return data


def _extract_root_table(data: Dict[str, Any]) -> Dict[str, Any]:
    tool_section = data.get("tool")
    if isinstance(tool_section, dict):
        section = tool_section.get("clustertask")
        if isinstance(section, dict):
            return section
    return data


def _extract_environment_table(root: Dict[str, Any]) -> Dict[str, Any]:
    environments = root.get("environments")
    if isinstance(environments, dict):
        return environments
    return root


def _resolve_environment_config(
    root_table: Dict[str, Any],
    env_table: Dict[str, Any],
    env_name: str,
) -> Dict[str, Any]:
    result: Dict[str, Any] = {}

    root_default = root_table.get("default")
    if root_default:
        if not isinstance(root_default, dict):
            raise ClusterfileInvalidError("[default] section must be a table.")
        result = _deep_merge(result, root_default)

    env_default = env_table.get("default")
    if env_default and env_default is not root_default:
        if not isinstance(env_default, dict):
            raise ClusterfileInvalidError("[default] environment must be a table.")
        result = _deep_merge(result, env_default)

    if env_name != "default":
        env_config = env_table.get(env_name)
        if env_config is None:
            raise ClusterfileEnvironmentNotFoundError(
                f"Environment '{env_name}' not defined in Clusterfile."
            )
        if not isinstance(env_config, dict):
            raise ClusterfileInvalidError(
                f"Environment '{env_name}' section must be a table."
            )
        result = _deep_merge(result, env_config)

    return result


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _build_callbacks(config: Optional[Any]) -> List[BaseCallback]:
    if config is None:
        return []
    if not isinstance(config, list):
        raise ClusterfileInvalidError("callbacks section must be a list.")

    return [_instantiate_callback(entry) for entry in config]


def _instantiate_callback(entry: Any) -> BaseCallback:
    if isinstance(entry, str):
        target = entry
        args: Tuple[Any, ...] = ()
        kwargs: Dict[str, Any] = {}
    elif isinstance(entry, dict):
        target = entry.get("target")
        if not isinstance(target, str) or not target:
            raise ClusterfileInvalidError(
                "Callback dictionary must include non-empty 'target'."
            )
        args = entry.get("args", ())
        kwargs = entry.get("kwargs", {})
        if not isinstance(args, (list, tuple)):
            raise ClusterfileInvalidError("Callback 'args' must be a list.")
        if not isinstance(kwargs, dict):
            raise ClusterfileInvalidError("Callback 'kwargs' must be a dictionary.")
    else:
        raise ClusterfileInvalidError("Callback entries must be strings or dictionaries.")

    factory = import_target(target, error_cls=ClusterfileInvalidError)
    instance = factory(*args, **kwargs)
    if not isinstance(instance, BaseCallback):
        raise ClusterfileInvalidError(
            f"Callback '{target}' did not produce a BaseCallback instance."
        )
    return instance


def import_target(target: str, error_cls: type = ImportError) -> Any:
    """Import ``module:attribute`` (or ``module.attribute``) and return it."""
    module_name, attr_name = _split_target(target, error_cls)
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr_name)
    except (ModuleNotFoundError, AttributeError) as exc:
        raise error_cls(f"Cannot import '{target}': {exc}.") from exc


def _split_target(target: str, error_cls: type) -> Tuple[str, str]:
    if ":" in target:
        module_name, attr_name = target.split(":", 1)
    else:
        module_name, _, attr_name = target.rpartition(".")
    if not module_name or not attr_name:
        raise error_cls(f"Invalid target '{target}'. Expected 'module:attribute'.")
    return module_name, attr_name
