"""Result serialization for the worker.

The files of a finished task are written in a fixed order: output data,
result, log, and last the done marker. The scheduler side only trusts the
other files once the done marker exists.
"""

import logging

# nosec B403 - pickle files are created by clustertask in trusted task directories
import pickle
from typing import Any

from ..task import TaskContext, TaskResult, write_output_data

logger = logging.getLogger("clustertask.runner")


def make_picklable(result: TaskResult) -> TaskResult:
    """Replace values of ``result`` that cannot be pickled.

    Exceptions raised by user code may hold unpicklable state (sockets,
    locks, ...). They are replaced by a RuntimeError carrying their text;
    the traceback string is kept as is.
    """
    if result.exception is not None:
        try:
            pickle.loads(pickle.dumps(result.exception))
        except Exception:
            result.exception = RuntimeError(
                f"{type(result.exception).__name__}: {result.exception}"
            )
    return result


def save_result(context: TaskContext, result: TaskResult, output: Any) -> None:
    """Write the output data, result, log and done marker of ``context``."""
    try:
        write_output_data(context.data_file, output)
    except Exception as e:
        logger.error("Unable to serialize the output of the task: %s", e)
        write_output_data(context.data_file, None)
        if result.success:
            result.success = False
            result.error_message = f"Unable to serialize the task output: {e}"

    make_picklable(result).serialize(context.result_file)
    context.log_file.write_text(result.log)
    context.done_file.touch()
    logger.debug("Task files written to %s", context.task_dir)
