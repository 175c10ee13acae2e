# clustertask/__init__.py

"""
This package dispatches workflow tasks to external batch schedulers
(SLURM, PBS Pro, TORQUE, HTCondor) and collects their results.
"""

__version__ = "0.1.0"

from .api import available_schedulers, backend_from_settings, create_backend
from .arbiter import StatusPollArbiter
from .config import ClusterSettings, load_settings
from .emergency import EmergencyStopEntry, EmergencyStopRegistry
from .scheduler import ClusterTaskScheduler
from .status import JobStatus, StatusResult
from .task import TaskContext, TaskResult
from .thread import TaskState, TaskThread

__all__ = [
    "ClusterSettings",
    "ClusterTaskScheduler",
    "EmergencyStopEntry",
    "EmergencyStopRegistry",
    "JobStatus",
    "StatusPollArbiter",
    "StatusResult",
    "TaskContext",
    "TaskResult",
    "TaskState",
    "TaskThread",
    "available_schedulers",
    "backend_from_settings",
    "create_backend",
    "load_settings",
]
