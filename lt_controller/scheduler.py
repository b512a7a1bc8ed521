"""Sequential scheduler loop: one job at a time, cooldown in between."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from lt_common.errors import LTError, SchedulerError
from lt_controller.cooldown import CooldownState, CooldownTimer
from lt_controller.notifications import NotificationBus, NotificationKind
from lt_controller.queue import JobQueue

logger = logging.getLogger(__name__)

ExecuteCallback = Callable[[int], Any]


@dataclass(frozen=True)
class SchedulerStatus:
    is_running: bool
    current_job_id: Optional[int]
    queue_length: int
    is_processing: bool
    cooldown: CooldownState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "current_job_id": self.current_job_id,
            "queue_length": self.queue_length,
            "is_processing": self.is_processing,
            "cooldown": self.cooldown.to_dict(),
        }


class Scheduler:
    """Drive the queue from a dedicated daemon thread."""

    def __init__(
        self,
        queue: JobQueue,
        cooldown: CooldownTimer,
        *,
        bus: NotificationBus | None = None,
        execute: ExecuteCallback | None = None,
        poll_interval: float = 2.0,
    ) -> None:
        self._queue = queue
        self._cooldown = cooldown
        self._bus = bus or NotificationBus()
        self._execute = execute
        self.poll_interval = poll_interval
        self._running = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._current_job_id: Optional[int] = None

    def on_execute(self, callback: ExecuteCallback) -> None:
        self._execute = callback

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    def start(self) -> None:
        if self._execute is None:
            raise SchedulerError("No execute callback set; call on_execute() first")
        if self._thread and self._thread.is_alive():
            return
        self._running.set()
        self._wake.clear()
        self._thread = threading.Thread(
            target=self._loop, name="lt-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Scheduler started")
        self._bus.emit(NotificationKind.SCHEDULER_STARTED)

    def stop(self) -> None:
        """Stop picking new jobs; an in-flight job is left to finish."""
        if not self._running.is_set():
            return
        self._running.clear()
        self._cooldown.cancel()
        self._wake.set()
        logger.info("Scheduler stopping")
        self._bus.emit(NotificationKind.SCHEDULER_STOPPED)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the loop thread; True when it has exited."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def wake(self) -> None:
        """Cut the idle poll short, e.g. right after an enqueue."""
        self._wake.set()

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_running=self.is_running,
            current_job_id=self._current_job_id,
            queue_length=len(self._queue),
            is_processing=self._queue.is_processing,
            cooldown=self._cooldown.status(),
        )

    def _loop(self) -> None:
        while self._running.is_set():
            # Busy before the pop: the queue must not look idle mid hand-over.
            self._queue.is_processing = True
            try:
                self._queue.sync()
            except LTError:
                logger.exception("Could not refresh the queue from the store")
            item = self._queue.dequeue()
            if item is None:
                self._queue.is_processing = False
                self._wake.wait(self.poll_interval)
                self._wake.clear()
                continue

            self._current_job_id = item.job_id
            self._bus.emit(NotificationKind.TEST_STARTING, item.job_id)
            try:
                self._execute(item.job_id)
            except Exception as exc:
                logger.exception("Job %s failed in scheduler", item.job_id)
                self._bus.emit(NotificationKind.TEST_FAILED, item.job_id, error=str(exc))
            else:
                self._bus.emit(NotificationKind.TEST_COMPLETED, item.job_id)
            finally:
                self._current_job_id = None
                self._queue.is_processing = False

            if self._running.is_set() and not self._queue.is_empty:
                upcoming = self._queue.peek()
                self._bus.emit(
                    NotificationKind.COOLDOWN_STARTING,
                    next_job_id=upcoming.job_id if upcoming else None,
                    duration_seconds=self._cooldown.default_duration_seconds,
                )
                self._cooldown.start(should_run=self._running.is_set)
        logger.info("Scheduler loop exited")
