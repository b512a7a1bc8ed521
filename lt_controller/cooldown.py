"""Mandatory pause between consecutive jobs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from lt_controller.notifications import NotificationBus, NotificationKind

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 900


@dataclass(frozen=True)
class CooldownState:
    is_active: bool
    remaining_seconds: int
    ends_at: Optional[datetime]
    default_duration_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_active": self.is_active,
            "remaining_seconds": self.remaining_seconds,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "default_duration_seconds": self.default_duration_seconds,
        }


class CooldownTimer:
    """Blocking, cancellable delay run by the scheduler thread."""

    def __init__(
        self,
        default_duration_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        bus: NotificationBus | None = None,
    ) -> None:
        self._default = default_duration_seconds
        self._bus = bus or NotificationBus()
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._ends_at: Optional[datetime] = None
        self._deadline: Optional[float] = None

    def start(
        self,
        duration_seconds: float | None = None,
        *,
        should_run: Callable[[], bool] | None = None,
    ) -> bool:
        """Wait out the cooldown; True when it elapsed, False when cancelled.

        ``should_run`` is checked under the timer lock, so a ``cancel`` issued
        just before ``start`` is not lost.
        """
        seconds = self._default if duration_seconds is None else duration_seconds
        if seconds <= 0:
            return True

        with self._lock:
            if should_run is not None and not should_run():
                return False
            self._wake.clear()
            self._deadline = time.monotonic() + seconds
            self._ends_at = datetime.now(timezone.utc) + timedelta(seconds=seconds)
            ends_at = self._ends_at
        logger.info("Cooldown started for %ss", seconds)
        self._bus.emit(
            NotificationKind.COOLDOWN_STARTED,
            duration_seconds=seconds,
            ends_at=ends_at.isoformat(),
        )

        cancelled = self._wake.wait(seconds)

        with self._lock:
            self._deadline = None
            self._ends_at = None
        if cancelled:
            logger.info("Cooldown cancelled")
            self._bus.emit(NotificationKind.COOLDOWN_CANCELLED)
            return False
        logger.info("Cooldown completed")
        self._bus.emit(NotificationKind.COOLDOWN_COMPLETED)
        return True

    def cancel(self) -> None:
        with self._lock:
            if self._deadline is not None:
                self._wake.set()

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._deadline is not None

    @property
    def remaining_seconds(self) -> int:
        with self._lock:
            if self._deadline is None:
                return 0
            return max(0, round(self._deadline - time.monotonic()))

    @property
    def ends_at(self) -> Optional[datetime]:
        with self._lock:
            return self._ends_at

    @property
    def default_duration_seconds(self) -> float:
        return self._default

    def set_default_duration(self, seconds: float) -> None:
        self._default = seconds

    def status(self) -> CooldownState:
        return CooldownState(
            is_active=self.is_active,
            remaining_seconds=self.remaining_seconds,
            ends_at=self.ends_at,
            default_duration_seconds=self._default,
        )
