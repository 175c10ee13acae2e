"""Task context and task result objects exchanged with the remote worker.

Both objects are serialized with pickle into the task directory. The
scheduler side writes the context file, the worker writes the data, result
and log files and finally the done marker.
"""

from __future__ import annotations

# nosec B403 - pickle files are created by clustertask in trusted task directories
import pickle
import re
import time
import traceback as traceback_module
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

TASK_CONTEXT_EXTENSION = ".context"
TASK_DATA_EXTENSION = ".data"
TASK_DONE_EXTENSION = ".done"
TASK_RESULT_EXTENSION = ".result"
TASK_JOB_ID_EXTENSION = ".jobid"
TASK_LOG_EXTENSION = ".log"
TASK_STDOUT_EXTENSION = ".out"
TASK_STDERR_EXTENSION = ".err"


def _sanitize_step_id(step_id: str) -> str:
    """Sanitize a step identifier for use in file names.

    Examples:
        >>> _sanitize_step_id("Map Reads")
        'map_reads'
        >>> _sanitize_step_id("filter:v2")
        'filter_v2'
    """
    name = step_id.lower()
    name = re.sub(r"[^\w\-]", "_", name)
    name = re.sub(r"_+", "_", name)
    name = name.strip("_")
    return name or "step"


@dataclass
class TaskContext:
    """Description of one unit of work submitted as a single remote job.

    Attributes:
        task_id: Identifier of the task, unique within a workflow run.
        step_id: Identifier of the workflow step the task belongs to.
        task_dir: Directory holding the task artifacts. It must be visible
            from the compute nodes.
        target: ``"module:function"`` executed by the worker.
        args: Positional arguments passed to the target.
        kwargs: Keyword arguments passed to the target.
        run_id: Identifier of the workflow run, used in job names.
        required_memory: Memory needed by the task in MB (<= 0 if unset).
        required_processors: Processors needed by the task (<= 0 if unset).
    """

    task_id: int
    step_id: str
    task_dir: Path
    target: str
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    run_id: str = "clustertask"
    required_memory: int = -1
    required_processors: int = -1

    def __post_init__(self) -> None:
        if isinstance(self.task_id, bool) or not isinstance(self.task_id, int):
            raise TypeError(f"task_id must be an int, got {self.task_id!r}")
        if not self.step_id:
            raise ValueError("step_id cannot be empty")
        self.task_dir = Path(self.task_dir)
        self.args = tuple(self.args)

    @property
    def task_prefix(self) -> str:
        return f"{_sanitize_step_id(self.step_id)}_task{self.task_id}"

    @property
    def job_name(self) -> str:
        return f"{self.run_id}-{self.task_prefix}"

    def _task_file(self, extension: str) -> Path:
        return self.task_dir / (self.task_prefix + extension)

    @property
    def context_file(self) -> Path:
        return self._task_file(TASK_CONTEXT_EXTENSION)

    @property
    def data_file(self) -> Path:
        return self._task_file(TASK_DATA_EXTENSION)

    @property
    def done_file(self) -> Path:
        return self._task_file(TASK_DONE_EXTENSION)

    @property
    def result_file(self) -> Path:
        return self._task_file(TASK_RESULT_EXTENSION)

    @property
    def job_id_file(self) -> Path:
        return self._task_file(TASK_JOB_ID_EXTENSION)

    @property
    def log_file(self) -> Path:
        return self._task_file(TASK_LOG_EXTENSION)

    # Written by the wrapper scripts, which only know the job name
    @property
    def stdout_file(self) -> Path:
        return self.task_dir / (self.job_name + TASK_STDOUT_EXTENSION)

    @property
    def stderr_file(self) -> Path:
        return self.task_dir / (self.job_name + TASK_STDERR_EXTENSION)

    def serialize(self, path: Optional[Path] = None) -> Path:
        """Write the context to ``path`` (default: :attr:`context_file`)."""
        target = Path(path) if path is not None else self.context_file
        _dump(self, target)
        return target

    @classmethod
    def deserialize(cls, path: Path) -> "TaskContext":
        obj = _load(path)
        if not isinstance(obj, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}")
        return obj


@dataclass
class TaskResult:
    """Outcome of a task.

    A result is either written by the remote worker or synthesized locally
    when submission, polling or result loading fails.
    """

    task_id: int
    step_id: str
    success: bool
    output: Any = None
    exception: Optional[BaseException] = None
    error_message: Optional[str] = None
    traceback: Optional[str] = None
    log: str = ""
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    @classmethod
    def from_exception(
        cls,
        context: TaskContext,
        exception: BaseException,
        *,
        start_time: Optional[float] = None,
        log: str = "",
    ) -> "TaskResult":
        """Create a failed result for ``context`` wrapping ``exception``."""
        return cls(
            task_id=context.task_id,
            step_id=context.step_id,
            success=False,
            exception=exception,
            error_message=str(exception) or type(exception).__name__,
            traceback="".join(
                traceback_module.format_exception(
                    type(exception), exception, exception.__traceback__
                )
            ),
            log=log,
            start_time=start_time,
            end_time=time.time(),
        )

    def serialize(self, path: Path) -> None:
        _dump(self, Path(path))

    @classmethod
    def deserialize(cls, path: Path) -> "TaskResult":
        obj = _load(path)
        if not isinstance(obj, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}")
        return obj


def write_output_data(path: Path, output: Any) -> None:
    _dump(output, Path(path))


def read_output_data(path: Path) -> Any:
    return _load(Path(path))


def _dump(obj: Any, path: Path) -> None:
    # Write to a sibling file first so readers never see a partial pickle
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "wb") as f:
        pickle.dump(obj, f)
    tmp_path.replace(path)


def _load(path: Path) -> Any:
    with open(path, "rb") as f:
        return pickle.load(f)  # nosec B301
