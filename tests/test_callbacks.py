import logging

from clustertask.callbacks import (
    BaseCallback,
    CompletedContext,
    JobStatusUpdatedContext,
    LoggerCallback,
    RichLoggerCallback,
    SubmitEndContext,
    run_callbacks,
)
from clustertask.status import JobStatus, StatusResult
from clustertask.task import TaskContext, TaskResult


def _context(tmp_path) -> TaskContext:
    return TaskContext(task_id=3, step_id="align", task_dir=tmp_path, target="m:f")


class DummyConsole:
    def __init__(self):
        self.printed = []

    def print(self, *args, **kwargs):
        self.printed.append(" ".join(str(a) for a in args))


def test_run_callbacks_isolates_failures(caplog):
    calls = []

    class Broken(BaseCallback):
        def on_task_submitted_ctx(self, ctx):
            raise RuntimeError("callback bug")

    class Recorder(BaseCallback):
        def on_task_submitted_ctx(self, ctx):
            calls.append(ctx)

    with caplog.at_level(logging.WARNING):
        run_callbacks([Broken(), Recorder()], "on_task_submitted_ctx", "ctx")

    assert calls == ["ctx"]
    assert "Error executing callback Broken.on_task_submitted_ctx" in caplog.text


def test_base_callback_hooks_are_no_ops(tmp_path):
    ctx = SubmitEndContext(
        context=_context(tmp_path),
        job_id="1",
        scheduler="slurm",
        required_memory=-1,
        required_processors=-1,
    )
    run_callbacks([BaseCallback()], "on_task_submitted_ctx", ctx)


def test_status_context_is_terminal(tmp_path):
    running = JobStatusUpdatedContext(_context(tmp_path), "1", StatusResult(JobStatus.RUNNING))
    done = JobStatusUpdatedContext(_context(tmp_path), "1", StatusResult(JobStatus.COMPLETE, 0))
    assert not running.is_terminal
    assert done.is_terminal


def test_logger_callback(tmp_path, caplog):
    logger = logging.getLogger("test.lifecycle")
    callback = LoggerCallback(logger=logger)
    context = _context(tmp_path)

    with caplog.at_level(logging.INFO, logger="test.lifecycle"):
        callback.on_task_submitted_ctx(
            SubmitEndContext(context, "77", "pbspro", 2048, -1)
        )
        callback.on_job_status_update_ctx(
            JobStatusUpdatedContext(context, "77", StatusResult(JobStatus.WAITING))
        )
        callback.on_task_completed_ctx(
            CompletedContext(
                context,
                TaskResult.from_exception(context, RuntimeError("node failure")),
                job_id="77",
            )
        )

    assert "submitted as job 77 on pbspro (memory=2048MB, procs=default)" in caplog.text
    assert "[77] status=WAITING" in caplog.text
    assert "node failure" in caplog.text
    assert caplog.records[-1].levelno == logging.ERROR


def test_rich_logger_callback(tmp_path):
    console = DummyConsole()
    callback = RichLoggerCallback(console=console)
    context = _context(tmp_path)

    callback.on_task_submitted_ctx(SubmitEndContext(context, "5", "slurm", -1, -1))
    callback.on_job_status_update_ctx(
        JobStatusUpdatedContext(context, "5", StatusResult(JobStatus.COMPLETE, 0))
    )
    callback.on_task_completed_ctx(
        CompletedContext(context, TaskResult(task_id=3, step_id="align", success=True))
    )

    assert len(console.printed) == 3
    assert "as job 5 on slurm" in console.printed[0]
    assert "COMPLETE 0" in console.printed[1]
    assert "done" in console.printed[2]
