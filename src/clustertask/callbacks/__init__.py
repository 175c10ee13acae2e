from .callbacks import (
    BaseCallback,
    CompletedContext,
    JobStatusUpdatedContext,
    LoggerCallback,
    RichLoggerCallback,
    SubmitEndContext,
    run_callbacks,
)

__all__ = [
    "BaseCallback",
    "CompletedContext",
    "JobStatusUpdatedContext",
    "LoggerCallback",
    "RichLoggerCallback",
    "SubmitEndContext",
    "run_callbacks",
]
