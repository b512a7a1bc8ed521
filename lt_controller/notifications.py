"""Typed notifications fanned out to subscribers."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    EXECUTION_EVENT = "execution_event"
    # queue
    ENQUEUED = "enqueued"
    DEQUEUED = "dequeued"
    REMOVED = "removed"
    CLEARED = "cleared"
    RESTORED = "restored"
    RECOVERED = "recovered"
    # scheduler
    SCHEDULER_STARTED = "scheduler_started"
    SCHEDULER_STOPPED = "scheduler_stopped"
    TEST_STARTING = "test_starting"
    TEST_COMPLETED = "test_completed"
    TEST_FAILED = "test_failed"
    COOLDOWN_STARTING = "cooldown_starting"
    # cooldown
    COOLDOWN_STARTED = "cooldown_started"
    COOLDOWN_COMPLETED = "cooldown_completed"
    COOLDOWN_CANCELLED = "cooldown_cancelled"
    # orchestrator
    INITIALIZED = "initialized"
    WARNING = "warning"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    job_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "job_id": self.job_id,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }


NotificationHandler = Callable[[Notification], None]


class NotificationBus:
    """Synchronous fire-and-forget fan-out; handler failures are logged only."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[NotificationHandler] = []

    def subscribe(self, handler: NotificationHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, notification: Notification) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(notification)
            except Exception as exc:
                logger.warning(
                    "Notification handler failed for %s: %s",
                    notification.kind.value,
                    exc,
                )

    def emit(
        self,
        kind: NotificationKind,
        job_id: Optional[int] = None,
        **payload: Any,
    ) -> None:
        self.publish(Notification(kind=kind, job_id=job_id, payload=payload))
