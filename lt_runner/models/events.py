"""Structured execution events produced by backends while a job runs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Kinds of events a backend may yield."""

    PHASE = "phase"
    STATUS = "status"
    PROGRESS = "progress"
    LOG = "log"
    ERROR = "error"
    COMPLETE = "complete"


class ExecutionPhase(str, Enum):
    """Execution phases reported through ``phase`` events."""

    INITIALIZING = "initializing"
    UPLOADING = "uploading"
    EXECUTING = "executing"
    COLLECTING = "collecting"
    CLEANUP = "cleanup"


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ExecutionEvent:
    """A single event emitted during one job execution."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.type is EventType.COMPLETE

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": dict(self.data),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def make_event(event_type: EventType, **data: Any) -> ExecutionEvent:
    """Build an event with the current UTC timestamp."""
    return ExecutionEvent(type=event_type, data=data)


def phase_event(phase: ExecutionPhase, message: str) -> ExecutionEvent:
    return make_event(EventType.PHASE, phase=phase.value, message=message)


def status_event(status: str) -> ExecutionEvent:
    return make_event(EventType.STATUS, status=status)


def progress_event(percent: int) -> ExecutionEvent:
    return make_event(EventType.PROGRESS, percent=percent)


def log_event(message: str, level: LogLevel = LogLevel.INFO) -> ExecutionEvent:
    return make_event(EventType.LOG, message=message, level=level.value)


def error_event(message: str) -> ExecutionEvent:
    return make_event(EventType.ERROR, message=message)


def complete_event(
    exit_code: int,
    *,
    result_file_path: str | None = None,
    log_file_path: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    error: str | None = None,
    **extra: Any,
) -> ExecutionEvent:
    """Build the terminal event of a backend stream."""
    data: dict[str, Any] = {
        "exitCode": exit_code,
        "resultFilePath": result_file_path,
        "logFilePath": log_file_path,
        "startTime": start_time.isoformat() if start_time else None,
        "endTime": end_time.isoformat() if end_time else None,
    }
    if error is not None:
        data["error"] = error
    data.update(extra)
    return make_event(EventType.COMPLETE, **data)
