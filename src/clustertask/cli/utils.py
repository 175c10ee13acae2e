"""Shared utilities for the clustertask CLI."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..api import backend_from_settings
from ..api.base import SchedulerBackend
from ..config import ClusterSettings, load_settings
from ..emergency import EmergencyStopRegistry


def get_settings(
    env: Optional[str] = None,
    clusterfile: Optional[str] = None,
    scheduler: Optional[str] = None,
) -> ClusterSettings:
    """Load settings from CLI args.

    Args:
        env: Environment name to load from the Clusterfile.
        clusterfile: Path to the Clusterfile.
        scheduler: Scheduler name overriding the Clusterfile one.
    """
    overrides: Dict[str, Any] = {}
    if scheduler:
        overrides["scheduler"] = scheduler
    return load_settings(clusterfile, env=env, overrides=overrides or None)


def get_backend(
    settings: ClusterSettings,
    registry: Optional[EmergencyStopRegistry] = None,
) -> SchedulerBackend:
    """Create the configured backend described by ``settings``."""
    return backend_from_settings(settings, registry)
