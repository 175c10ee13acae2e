"""Tests for TaskThread: submission, polling, result loading and stop."""

import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

HELPERS_DIR = Path(__file__).parent / "helpers"
if str(HELPERS_DIR) not in sys.path:
    sys.path.insert(0, str(HELPERS_DIR))

from fake_backend import COMPLETE_OK, RUNNING, WAITING, FakeBackend  # noqa: E402

from clustertask.api import create_backend  # noqa: E402
from clustertask.arbiter import StatusPollArbiter  # noqa: E402
from clustertask.callbacks import BaseCallback  # noqa: E402
from clustertask.config import ClusterSettings  # noqa: E402
from clustertask.emergency import EmergencyStopRegistry  # noqa: E402
from clustertask.errors import (  # noqa: E402
    MissingDoneMarkerError,
    SubmissionError,
    TaskCancelledError,
    TaskExecutionError,
)
from clustertask.runner.result_saver import save_result  # noqa: E402
from clustertask.status import JobStatus, StatusResult  # noqa: E402
from clustertask.task import TaskContext, TaskResult  # noqa: E402
from clustertask.thread import TaskState, TaskThread  # noqa: E402


class RecordingCallback(BaseCallback):
    def __init__(self):
        self.submitted = []
        self.statuses = []

    def on_task_submitted_ctx(self, ctx):
        self.submitted.append(ctx)

    def on_job_status_update_ctx(self, ctx):
        self.statuses.append(ctx)


@pytest.fixture
def settings():
    return ClusterSettings(
        status_poll_interval=0.01,
        status_retry_delay=0,
        entry_point=("python", "-m", "clustertask"),
    )


@pytest.fixture
def context(tmp_path):
    return TaskContext(
        task_id=1,
        step_id="map",
        task_dir=tmp_path,
        target="operator:add",
        args=(2, 3),
        run_id="run",
    )


def _write_worker_files(context, output=5, success=True):
    result = TaskResult(task_id=context.task_id, step_id=context.step_id, success=success)
    save_result(context, result, output)


def _run(thread, timeout=10):
    thread.start()
    thread.join(timeout)
    assert not thread.is_alive()
    return thread.result


def _make_thread(context, backend, settings, **kwargs):
    return TaskThread(context, backend, StatusPollArbiter(0.01), settings, **kwargs)


def test_successful_task(context, settings):
    _write_worker_files(context, output=5)
    backend = FakeBackend([WAITING, RUNNING, COMPLETE_OK])
    callback = RecordingCallback()
    finished = []
    thread = _make_thread(
        context,
        backend,
        settings,
        callbacks=[callback],
        on_finished=lambda t, r: finished.append(r),
    )

    result = _run(thread)

    assert result.success
    assert result.output == 5
    assert thread.state is TaskState.COMPLETED
    assert thread.job_id == "job-1"
    assert finished == [result]
    assert context.job_id_file.read_text() == "job-1\n"
    assert backend.status_calls == ["job-1"] * 3
    assert [c.job_id for c in callback.submitted] == ["job-1"]
    assert [c.status.status for c in callback.statuses] == [
        JobStatus.WAITING,
        JobStatus.RUNNING,
        JobStatus.COMPLETE,
    ]
    assert callback.statuses[-1].is_terminal


def test_repeated_status_is_reported_once(context, settings):
    _write_worker_files(context)
    backend = FakeBackend([RUNNING, RUNNING, RUNNING, COMPLETE_OK])
    callback = RecordingCallback()

    _run(_make_thread(context, backend, settings, callbacks=[callback]))

    assert len(backend.status_calls) == 4
    assert [c.status.status for c in callback.statuses] == [
        JobStatus.RUNNING,
        JobStatus.COMPLETE,
    ]


def test_submitted_command(context, settings):
    _write_worker_files(context)
    backend = FakeBackend()

    _run(_make_thread(context, backend, settings))

    (submission,) = backend.submitted
    assert submission["job_name"] == "run-map_task1"
    assert submission["job_dir"] == str(context.task_dir)
    assert submission["task_id"] == 1
    command = submission["command"]
    assert command[:4] == ["python", "-m", "clustertask", "exec-task"]
    assert command[-1] == str(context.context_file.absolute())
    assert TaskContext.deserialize(context.context_file) == context


def test_log_level_is_forwarded_to_the_worker(context, settings):
    settings.log_level = "DEBUG"
    thread = _make_thread(context, FakeBackend(), settings)

    command = thread.build_command()

    index = command.index("--log-level")
    assert command[index + 1] == "DEBUG"
    assert "--workdir" in command


def test_missing_done_marker_fails(context, settings):
    backend = FakeBackend([COMPLETE_OK])

    result = _run(_make_thread(context, backend, settings))

    assert not result.success
    assert isinstance(result.exception, MissingDoneMarkerError)
    assert result.error_message == "No done file found for task #1 in step map"


def test_non_zero_exit_code_fails(context, settings):
    _write_worker_files(context)
    backend = FakeBackend([StatusResult(JobStatus.COMPLETE, 3)])
    thread = _make_thread(context, backend, settings)

    result = _run(thread)

    assert not result.success
    assert isinstance(result.exception, TaskExecutionError)
    assert result.error_message == "Invalid task exit code: 3 for task #1 in step map"
    assert thread.state is TaskState.FAILED


def test_non_zero_exit_code_keeps_the_worker_error(context, settings):
    result = TaskResult.from_exception(context, ValueError("input file missing"))
    result.log = "ERROR user.task: input file missing\n"
    save_result(context, result, None)
    backend = FakeBackend([StatusResult(JobStatus.COMPLETE, 1)])
    thread = _make_thread(context, backend, settings)

    result = _run(thread)

    assert not result.success
    assert result.error_message == (
        "Invalid task exit code: 1 for task #1 in step map: input file missing"
    )
    assert result.log == "ERROR user.task: input file missing\n"
    assert isinstance(result.exception, ValueError)
    assert thread.state is TaskState.FAILED


def test_failed_worker_result_is_reported(context, settings):
    _write_worker_files(context, output=None, success=False)

    result = _run(_make_thread(context, FakeBackend(), settings))

    assert not result.success


def test_submission_failure(context, settings):
    registry = EmergencyStopRegistry()
    backend = FakeBackend(registry=registry, fail_submission=True)
    finished = []
    thread = _make_thread(
        context,
        backend,
        settings,
        registry=registry,
        on_finished=lambda t, r: finished.append(r),
    )

    result = _run(thread)

    assert not result.success
    assert isinstance(result.exception, SubmissionError)
    assert thread.job_id is None
    assert len(registry) == 0
    assert len(finished) == 1
    assert backend.status_calls == []


def test_status_failure_is_reported(context, settings):
    backend = FakeBackend()
    backend.status_job = MagicMock(side_effect=RuntimeError("scheduler unreachable"))

    result = _run(_make_thread(context, backend, settings))

    assert not result.success
    assert "scheduler unreachable" in result.error_message


def test_stop_thread_while_polling(context, settings):
    registry = EmergencyStopRegistry()
    backend = FakeBackend([RUNNING], registry=registry)
    thread = _make_thread(context, backend, settings, registry=registry)

    thread.start()
    deadline = time.monotonic() + 5
    while not backend.status_calls and time.monotonic() < deadline:
        time.sleep(0.01)
    assert "job-1" in registry

    thread.stop_thread()
    thread.join(5)

    assert not thread.is_alive()
    assert thread.state is TaskState.STOPPED
    assert isinstance(thread.result.exception, TaskCancelledError)
    assert backend.stopped == ["job-1"]
    assert len(registry) == 0


def test_stop_before_start_never_submits(context, settings):
    backend = FakeBackend()
    thread = _make_thread(context, backend, settings)

    thread.stop_thread()
    result = _run(thread)

    assert not result.success
    assert thread.state is TaskState.STOPPED
    assert backend.submitted == []
    assert backend.stopped == []


def test_stop_during_submission_kills_the_new_job(context, settings):
    backend = FakeBackend()
    original_submit = backend.submit_job
    thread = _make_thread(context, backend, settings)

    def submit_then_stop(*args, **kwargs):
        job_id = original_submit(*args, **kwargs)
        # The job id is not known by the thread yet
        thread.stop_thread()
        return job_id

    backend.submit_job = submit_then_stop

    result = _run(thread)

    assert not result.success
    assert backend.stopped == ["job-1"]
    assert backend.status_calls == []


def test_on_finished_failure_is_contained(context, settings):
    _write_worker_files(context)

    def explode(thread, result):
        raise RuntimeError("collector bug")

    thread = _make_thread(context, FakeBackend(), settings, on_finished=explode)

    result = _run(thread)

    assert result.success
    assert thread.state is TaskState.COMPLETED


class TestRequiredMemory:
    def test_task_value_wins(self, context, settings):
        context.required_memory = 1000
        settings.default_memory = 2000
        assert _make_thread(context, FakeBackend(), settings).required_memory == 1000

    def test_cluster_default(self, context, settings):
        settings.default_memory = 2000
        assert _make_thread(context, FakeBackend(), settings).required_memory == 2000

    def test_application_memory(self, context, settings):
        settings.application_memory = 3000
        assert _make_thread(context, FakeBackend(), settings).required_memory == 3000


def test_with_wrapper_script(context, settings, write_script):
    """A job going through a real wrapper script."""
    script = write_script(
        "wrapper.sh",
        """
        case "$1" in
          start) echo "$NAME" > "$JOBDIR/submitted"; echo 4242 ;;
          status) echo "COMPLETE 0" ;;
          stop) exit 0 ;;
        esac
        """,
    )
    settings.wrapper_script = script
    registry = EmergencyStopRegistry()
    backend = create_backend("slurm", registry=registry)
    backend.configure(settings)
    _write_worker_files(context, output=[1, 2])

    result = _run(_make_thread(context, backend, settings, registry=registry))

    assert result.success
    assert result.output == [1, 2]
    assert (context.task_dir / "submitted").read_text().strip() == "run-map_task1"
    assert context.job_id_file.read_text() == "4242\n"
    assert len(registry) == 0


def test_wrapper_submission_failure(context, settings, write_script):
    script = write_script("wrapper.sh", 'echo "sbatch: invalid partition" >&2\nexit 1\n')
    settings.wrapper_script = script
    registry = EmergencyStopRegistry()
    backend = create_backend("slurm", registry=registry)
    backend.configure(settings)

    result = _run(_make_thread(context, backend, settings, registry=registry))

    assert not result.success
    assert isinstance(result.exception, SubmissionError)
    assert len(registry) == 0


def test_thread_is_a_daemon(context, settings):
    thread = _make_thread(context, FakeBackend(), settings)
    assert thread.daemon
    assert thread.name == "clustertask-map_task1"
    assert isinstance(thread, threading.Thread)
