"""Emergency stop of remote jobs on abnormal termination.

Every job accepted by a scheduler is recorded in an
:class:`EmergencyStopRegistry` until its completion is observed. If the
application dies before that (uncaught exception, SIGTERM, Ctrl-C) the
registry kills the remaining jobs so they do not keep consuming cluster
resources.
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .api.base import SchedulerBackend

logger = logging.getLogger(__name__)

_HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


@dataclass(frozen=True)
class EmergencyStopEntry:
    """A job to kill on emergency stop. Entries are identified by job id."""

    backend: "SchedulerBackend" = field(compare=False, hash=False)
    job_id: str

    def stop(self) -> bool:
        return self.backend.stop_job(self.job_id)


class EmergencyStopRegistry:
    """Thread-safe set of jobs to stop on abnormal termination.

    Example:
        >>> with EmergencyStopRegistry() as registry:
        ...     scheduler = ClusterTaskScheduler(backend, settings, registry)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, EmergencyStopEntry] = {}
        self._installed = False
        self._previous_handlers: Dict[int, Any] = {}

    def add(self, backend: "SchedulerBackend", job_id: str) -> None:
        entry = EmergencyStopEntry(backend, job_id)
        with self._lock:
            self._entries[entry.job_id] = entry

    def remove(self, job_id: str) -> None:
        with self._lock:
            self._entries.pop(job_id, None)

    def entries(self) -> List[EmergencyStopEntry]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        if isinstance(job_id, EmergencyStopEntry):
            job_id = job_id.job_id
        with self._lock:
            return job_id in self._entries

    def stop_all(self) -> int:
        """Stop every registered job and clear the registry.

        Returns:
            int: Number of stop requests accepted by the schedulers.
        """
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()

        if entries:
            logger.warning("Emergency stop of %d job(s)", len(entries))

        stopped = 0
        for entry in entries:
            try:
                if entry.stop():
                    stopped += 1
            except Exception as e:
                logger.error(
                    "Failed to stop job %s on %s: %s",
                    entry.job_id,
                    entry.backend.name,
                    e,
                )
        return stopped

    def install(self) -> None:
        """Stop registered jobs at interpreter exit and on SIGTERM/SIGINT.

        Signal handlers can only be installed from the main thread; from any
        other thread only the exit hook is registered.
        """
        if self._installed:
            return
        atexit.register(self.stop_all)
        if threading.current_thread() is threading.main_thread():
            for signum in _HANDLED_SIGNALS:
                self._previous_handlers[signum] = signal.getsignal(signum)
                signal.signal(signum, self._handle_signal)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        atexit.unregister(self.stop_all)
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def _handle_signal(self, signum: int, frame: Optional[Any]) -> None:
        logger.warning("Received signal %d, stopping submitted jobs", signum)
        self.stop_all()
        previous = self._previous_handlers.get(signum)
        if callable(previous):
            previous(signum, frame)
        elif signum == signal.SIGINT:
            raise KeyboardInterrupt
        else:
            raise SystemExit(128 + signum)

    def __enter__(self) -> "EmergencyStopRegistry":
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None:
                self.stop_all()
        finally:
            self.uninstall()
