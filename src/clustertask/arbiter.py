"""FIFO arbitration of job status queries.

Batch schedulers do not like being hammered with status requests. All task
threads therefore take turns: a thread that wants to poll its job enqueues
itself and waits until it reaches the head of the queue. Only the head may
query the scheduler, so at most one status command is in flight at any time
and nobody polls out of turn.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from contextlib import contextmanager
from typing import Any, Deque, Iterator, List, Optional

from .errors import TaskCancelledError

logger = logging.getLogger(__name__)


class StatusPollArbiter:
    """Serialize status queries in strict enqueue order.

    Args:
        poll_interval: Maximum time in seconds a waiter sleeps before checking
            again whether it reached the head or was cancelled.
    """

    def __init__(self, poll_interval: float = 1.0) -> None:
        self.poll_interval = poll_interval
        self._queue: Deque[Any] = deque()
        self._condition = threading.Condition()

    def _enqueue(self, requester: Any) -> None:
        with self._condition:
            self._queue.append(requester)

    def _wait_for_head(
        self, requester: Any, cancel_event: Optional[threading.Event]
    ) -> None:
        with self._condition:
            while self._queue[0] is not requester:
                if cancel_event is not None and cancel_event.is_set():
                    self._discard(requester)
                    raise TaskCancelledError(
                        "Cancelled while waiting for a status poll turn"
                    )
                self._condition.wait(timeout=self.poll_interval)
            if cancel_event is not None and cancel_event.is_set():
                self._discard(requester)
                raise TaskCancelledError(
                    "Cancelled while waiting for a status poll turn"
                )

    def _discard(self, requester: Any) -> None:
        # Caller holds the condition
        for index, queued in enumerate(self._queue):
            if queued is requester:
                del self._queue[index]
                break
        self._condition.notify_all()

    def _release(self, requester: Any) -> None:
        with self._condition:
            self._discard(requester)

    def wait_turn(
        self, requester: Any, cancel_event: Optional[threading.Event] = None
    ) -> None:
        """Block until ``requester`` reaches the head, then leave the queue.

        Raises:
            TaskCancelledError: If ``cancel_event`` is set while waiting. The
                requester is removed from the queue first.
        """
        self._enqueue(requester)
        self._wait_for_head(requester, cancel_event)
        self._release(requester)

    @contextmanager
    def turn(
        self, requester: Any, cancel_event: Optional[threading.Event] = None
    ) -> Iterator[None]:
        """Hold the head of the queue for the duration of the block.

        Example:
            >>> with arbiter.turn(self, self.cancel_event):
            ...     status = backend.status_job(job_id)
        """
        self._enqueue(requester)
        self._wait_for_head(requester, cancel_event)
        try:
            yield
        finally:
            self._release(requester)

    def pending(self) -> List[Any]:
        """Snapshot of the queued requesters, head first."""
        with self._condition:
            return list(self._queue)

    def __len__(self) -> int:
        with self._condition:
            return len(self._queue)
