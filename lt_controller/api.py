"""Public API surface for lt_controller."""

from lt_controller.cooldown import CooldownState, CooldownTimer
from lt_controller.models.jobs import Job, JobStatus, validate_transition
from lt_controller.notifications import (
    Notification,
    NotificationBus,
    NotificationKind,
)
from lt_controller.orchestrator import EnqueueResult, Orchestrator, OrchestratorStatus
from lt_controller.queue import JobQueue, QueueItem
from lt_controller.scheduler import Scheduler, SchedulerStatus
from lt_controller.settings import OrchestratorSettings
from lt_controller.store import InMemoryJobStore, JobStore, JsonJobStore

__all__ = [
    "CooldownState",
    "CooldownTimer",
    "EnqueueResult",
    "InMemoryJobStore",
    "Job",
    "JobQueue",
    "JobStatus",
    "JobStore",
    "JsonJobStore",
    "Notification",
    "NotificationBus",
    "NotificationKind",
    "Orchestrator",
    "OrchestratorSettings",
    "OrchestratorStatus",
    "QueueItem",
    "Scheduler",
    "SchedulerStatus",
    "validate_transition",
]
