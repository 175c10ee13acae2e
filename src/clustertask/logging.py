"""
Logging helpers for clustertask.

Provides a single entrypoint `configure_logging` to establish pleasant
defaults for everyday use, while keeping wrapper script output available at
DEBUG level.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _quiet_third_party() -> None:
    """Reduce verbosity of common third-party libraries."""
    for name in (
        "paramiko",
        "paramiko.transport",
    ):
        logging.getLogger(name).setLevel(logging.WARNING)


def resolve_level(level: Union[int, str]) -> int:
    """Convert a level name such as ``"debug"`` to its numeric value."""
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name not in LOG_LEVELS:
        raise ValueError(
            f"Invalid log level {level!r}. Expected one of: {', '.join(LOG_LEVELS)}"
        )
    return getattr(logging, name)


def configure_logging(
    level: Union[int, str] = logging.INFO, use_rich: bool = True
) -> None:
    """Configure application logging.

    Args:
        level: Root logging level (default: logging.INFO). Level names are
            accepted too, which is how the remote worker receives it.
        use_rich: If True and rich is available, install a Rich handler with
            a concise format (no duplicated level text in messages).
    """
    _quiet_third_party()

    # Remove any pre-existing handlers to avoid duplicate output
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    root.setLevel(resolve_level(level))

    handler: Optional[logging.Handler] = None
    if use_rich:
        try:
            from rich.logging import RichHandler  # type: ignore

            handler = RichHandler(
                show_time=True,
                show_path=False,
                markup=False,
                rich_tracebacks=True,
                enable_link_path=False,
            )
            handler.setFormatter(logging.Formatter("%(message)s"))
        except Exception:
            handler = None

    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(message)s")
        )

    root.addHandler(handler)
