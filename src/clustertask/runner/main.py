"""Worker side of a task: the ``exec-task`` sub-command.

The command submitted to the scheduler runs on a compute node. It loads the
serialized :class:`~clustertask.task.TaskContext`, calls its target and
writes the task files that the scheduler side loads once the job is
complete.
"""

import io
import logging
import os
import socket
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..config import import_target
from ..logging import configure_logging
from ..task import TaskContext, TaskResult
from .result_saver import save_result

logger = logging.getLogger("clustertask.runner")

# Job id variables set by the supported schedulers
JOB_ID_VARIABLES = ("SLURM_JOB_ID", "PBS_JOBID", "CONDOR_JOB_ID", "_CONDOR_JOB_AD")


def get_job_id_from_env() -> Optional[str]:
    """Get the scheduler job id of the current process, if any."""
    for name in JOB_ID_VARIABLES:
        value = os.environ.get(name)
        if value:
            return value
    return None


def load_function(target: str) -> Callable[..., Any]:
    """Load the ``module:function`` target of a task.

    Raises:
        ImportError: If the module or the function cannot be found.
        TypeError: If the target is not callable.
    """
    logger.debug("Importing target: %s", target)
    func = import_target(target)
    if not callable(func):
        raise TypeError(f"Task target '{target}' is not callable")
    return func


def execute_task(func: Callable[..., Any], task_args: tuple, task_kwargs: Dict[str, Any]) -> Any:
    logger.info("Executing task...")
    result = func(*task_args, **task_kwargs)
    logger.info("Task execution complete")
    return result


def _capture_log() -> Tuple[logging.Handler, io.StringIO]:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logging.getLogger().addHandler(handler)
    return handler, stream


def run_task_context(context: TaskContext) -> TaskResult:
    """Run ``context`` in the current process and write its task files.

    Returns:
        TaskResult: The result written to the result file.
    """
    handler, stream = _capture_log()
    start_time = time.time()
    output: Any = None
    try:
        logger.info(
            "Starting task #%d of step %s on %s (job %s)",
            context.task_id,
            context.step_id,
            socket.gethostname(),
            get_job_id_from_env() or "unknown",
        )
        func = load_function(context.target)
        output = execute_task(func, context.args, context.kwargs)
        result = TaskResult(
            task_id=context.task_id,
            step_id=context.step_id,
            success=True,
            start_time=start_time,
            end_time=time.time(),
        )
    except Exception as e:
        logger.error("Task #%d of step %s failed: %s", context.task_id, context.step_id, e)
        result = TaskResult.from_exception(context, e, start_time=start_time)
    finally:
        logging.getLogger().removeHandler(handler)

    result.log = stream.getvalue()
    save_result(context, result, output)
    return result


def execute_task_context(
    context_file: Union[str, Path],
    workdir: Optional[Union[str, Path]] = None,
    log_level: Optional[str] = None,
) -> int:
    """Entry point of the ``exec-task`` sub-command.

    Args:
        context_file: Path of the serialized task context.
        workdir: Directory to run the task in.
        log_level: Logging level name for the worker.

    Returns:
        int: 0 once the task files are written, whether the task succeeded
        or not; 1 if they could not be written.
    """
    configure_logging(log_level or logging.INFO, use_rich=False)

    if workdir is not None:
        os.chdir(workdir)

    try:
        context = TaskContext.deserialize(Path(context_file))
    except Exception as e:
        logger.error("Unable to load the task context %s: %s", context_file, e)
        return 1

    try:
        result = run_task_context(context)
    except Exception as e:
        logger.error("Unable to write the task files to %s: %s", context.task_dir, e)
        return 1

    # A failed task reports its error through the result file
    if not result.success:
        logger.info("Task #%d failed, its error is in %s", context.task_id, context.result_file)
    return 0
