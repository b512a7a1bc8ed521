"""Priority-ordered, persisted job queue."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from lt_common.errors import InvalidTransitionError
from lt_controller.models.jobs import JobStatus, utcnow
from lt_controller.notifications import NotificationBus, NotificationKind
from lt_controller.store import JobStore, require_job

logger = logging.getLogger(__name__)

RESTART_ERROR = "Interrupted by restart while running"


@dataclass(frozen=True)
class QueueItem:
    job_id: int
    priority: int = 0
    enqueued_at: datetime = field(default_factory=utcnow)


class JobQueue:
    """In-memory ordering over jobs whose persisted status is ``queued``.

    Lower priority values run sooner; equal priorities keep FIFO order. Every
    mutation is persisted before the in-memory list changes.
    """

    def __init__(self, store: JobStore, bus: NotificationBus | None = None) -> None:
        self._store = store
        self._bus = bus or NotificationBus()
        self._lock = threading.Lock()
        self._items: list[QueueItem] = []
        self._handed_out: set[int] = set()
        self._processing = False

    def restore(self) -> tuple[int, list[int]]:
        """Reload queued jobs and fail jobs left running by a previous process.

        Returns the number of restored items and the ids of recovered jobs.
        """
        count = self.load_queued()
        if count:
            logger.info("Restored %d queued job(s)", count)
            self._bus.emit(NotificationKind.RESTORED, count=count)
        return count, self.recover_interrupted()

    def load_queued(self) -> int:
        """Rebuild the in-memory list from jobs persisted as ``queued``."""
        with self._lock:
            queued = self._store.find_jobs_by_status(JobStatus.QUEUED)
            items = [
                QueueItem(job.id, 0, job.queued_at or utcnow()) for job in queued
            ]
            items.sort(key=lambda item: item.enqueued_at)
            self._items = items
        return len(items)

    def recover_interrupted(self) -> list[int]:
        """Fail every job still marked ``running``; they are never re-queued."""
        with self._lock:
            stuck = self._store.find_jobs_by_status(JobStatus.RUNNING)
            for job in stuck:
                self._store.update_job(
                    job.id,
                    status=JobStatus.FAILED,
                    error_log=RESTART_ERROR,
                    completed_at=utcnow(),
                )
                logger.warning("Job %s was running at shutdown; marked failed", job.id)
        stuck_ids = [job.id for job in stuck]
        if stuck_ids:
            self._bus.emit(
                NotificationKind.RECOVERED,
                failed_count=len(stuck_ids),
                ids=stuck_ids,
            )
        return stuck_ids

    def sync(self) -> tuple[list[int], list[int]]:
        """Reconcile the in-memory list with the store.

        Picks up jobs queued by another process (appended behind equal
        priorities) and drops items whose persisted status moved on, e.g. a
        cancel issued from another process. Jobs already handed to the
        scheduler are never re-added. Returns ``(added, dropped)`` ids.
        """
        with self._lock:
            queued = {job.id: job for job in self._store.find_jobs_by_status(JobStatus.QUEUED)}
            self._handed_out &= set(queued)
            dropped = [item.job_id for item in self._items if item.job_id not in queued]
            if dropped:
                self._items = [item for item in self._items if item.job_id in queued]
            known = {item.job_id for item in self._items} | self._handed_out
            fresh = sorted(
                (job for job_id, job in queued.items() if job_id not in known),
                key=lambda job: (job.queued_at or utcnow(), job.id),
            )
            added: list[tuple[int, int]] = []
            for job in fresh:
                item = QueueItem(job.id, 0, job.queued_at or utcnow())
                index = next(
                    (i for i, queued_item in enumerate(self._items) if queued_item.priority > 0),
                    len(self._items),
                )
                self._items.insert(index, item)
                added.append((job.id, index + 1))

        for job_id in dropped:
            logger.info("Job %s left the queue from another process", job_id)
            self._bus.emit(NotificationKind.REMOVED, job_id)
        for job_id, position in added:
            logger.info("Job %s picked up from the store at position %d", job_id, position)
            self._bus.emit(NotificationKind.ENQUEUED, job_id, position=position, priority=0)
        return [job_id for job_id, _ in added], dropped

    def enqueue(self, job_id: int, priority: int = 0) -> QueueItem:
        with self._lock:
            job = require_job(self._store, job_id)
            if job.status is not JobStatus.PENDING:
                raise InvalidTransitionError(
                    f"Job {job_id} cannot be queued from status {job.status.value}",
                    context={"job_id": job_id, "status": job.status.value},
                )
            now = utcnow()
            self._store.update_job(job_id, status=JobStatus.QUEUED, queued_at=now)

            item = QueueItem(job_id, priority, now)
            index = next(
                (i for i, queued in enumerate(self._items) if queued.priority > priority),
                len(self._items),
            )
            self._items.insert(index, item)
            position = index + 1

        logger.info("Job %s queued at position %d (priority %d)", job_id, position, priority)
        self._bus.emit(NotificationKind.ENQUEUED, job_id, position=position, priority=priority)
        return item

    def dequeue(self) -> Optional[QueueItem]:
        with self._lock:
            if not self._items:
                return None
            item = self._items.pop(0)
            self._handed_out.add(item.job_id)
        self._bus.emit(NotificationKind.DEQUEUED, item.job_id)
        return item

    def remove(self, job_id: int) -> bool:
        """Cancel a queued job; False when it is not in the queue."""
        with self._lock:
            index = self._index_of(job_id)
            if index < 0:
                return False
            self._store.update_job(
                job_id, status=JobStatus.CANCELLED, completed_at=utcnow()
            )
            del self._items[index]
        logger.info("Job %s removed from queue", job_id)
        self._bus.emit(NotificationKind.REMOVED, job_id)
        return True

    def clear(self) -> int:
        """Cancel every queued job and empty the queue."""
        count = 0
        with self._lock:
            now = utcnow()
            while self._items:
                item = self._items[0]
                self._store.update_job(
                    item.job_id, status=JobStatus.CANCELLED, completed_at=now
                )
                self._items.pop(0)
                count += 1
        logger.info("Cleared %d queued job(s)", count)
        self._bus.emit(NotificationKind.CLEARED, count=count)
        return count

    def peek(self) -> Optional[QueueItem]:
        with self._lock:
            return self._items[0] if self._items else None

    def position(self, job_id: int) -> int:
        """1-based position of a job, -1 when it is not queued."""
        with self._lock:
            index = self._index_of(job_id)
        return index + 1 if index >= 0 else -1

    def items(self) -> tuple[QueueItem, ...]:
        with self._lock:
            return tuple(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def length(self) -> int:
        return len(self)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @property
    def is_processing(self) -> bool:
        return self._processing

    @is_processing.setter
    def is_processing(self, value: bool) -> None:
        self._processing = value

    def _index_of(self, job_id: int) -> int:
        for index, item in enumerate(self._items):
            if item.job_id == job_id:
                return index
        return -1
