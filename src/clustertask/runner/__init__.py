"""Runner package for executing clustertask tasks.

This package contains the worker code executed by the scheduler jobs
through the hidden ``clustertask exec-task`` sub-command.
"""

from clustertask.runner.main import (
    execute_task,
    execute_task_context,
    get_job_id_from_env,
    load_function,
    run_task_context,
)
from clustertask.runner.result_saver import make_picklable, save_result

__all__ = [
    "execute_task",
    "execute_task_context",
    "get_job_id_from_env",
    "load_function",
    "make_picklable",
    "run_task_context",
    "save_result",
]
