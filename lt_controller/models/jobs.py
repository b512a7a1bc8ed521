"""Job record and status lifecycle."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from lt_common.errors import InvalidTransitionError


class JobStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.QUEUED},
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.CANCELLED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
    JobStatus.CANCELLED: set(),
}


def validate_transition(current: JobStatus | str, new: JobStatus | str) -> None:
    """Raise InvalidTransitionError unless ``current -> new`` moves forward."""
    current = JobStatus(current)
    new = JobStatus(new)
    if current == new:
        return
    if new not in _ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Invalid job transition {current.value} -> {new.value}",
            context={"from": current.value, "to": new.value},
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_DATETIME_FIELDS = ("queued_at", "started_at", "completed_at", "created_at")


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Job:
    """A persisted load-test job."""

    id: int
    name: str = ""
    status: JobStatus = JobStatus.PENDING
    backend_type: str = "local"
    backend_config: Dict[str, Any] = field(default_factory=dict)
    script_path: str = ""
    concurrency: int = 1
    duration_seconds: int = 60
    ramp_up_seconds: Optional[int] = None
    cooldown_seconds: Optional[int] = None
    progress_percent: int = 0
    current_phase: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result_file: Optional[str] = None
    log_file: Optional[str] = None
    error_log: Optional[str] = None
    exit_code: Optional[int] = None
    total_samples: Optional[int] = None
    error_count: Optional[int] = None
    error_percent: Optional[float] = None
    average_response_time: Optional[float] = None
    p90_response_time: Optional[float] = None
    p95_response_time: Optional[float] = None
    throughput: Optional[float] = None

    def __post_init__(self) -> None:
        self.status = JobStatus(self.status)
        for name in _DATETIME_FIELDS:
            setattr(self, name, _parse_datetime(getattr(self, name)))

    @property
    def custom_properties(self) -> dict[str, str]:
        raw = self.backend_config.get("custom_properties") or {}
        if not isinstance(raw, Mapping):
            return {}
        return {str(key): str(value) for key, value in raw.items()}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for name in _DATETIME_FIELDS:
            value = data.get(name)
            data[name] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Job":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


JOB_FIELDS = frozenset(f.name for f in fields(Job))
