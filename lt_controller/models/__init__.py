"""Controller data models."""

from lt_controller.models.jobs import Job, JobStatus, validate_transition

__all__ = ["Job", "JobStatus", "validate_transition"]
