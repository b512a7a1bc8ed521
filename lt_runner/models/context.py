"""Per-execution job context handed to a backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class JobContext:
    """Everything a backend needs to run one job.

    Built by the orchestrator right before execution and discarded afterwards.
    """

    job_id: int
    script_path: Path
    result_path: Path
    log_path: Path
    concurrency: int
    duration_seconds: int
    ramp_up_seconds: int
    custom_properties: dict[str, str] = field(default_factory=dict)

    def tool_properties(self) -> dict[str, str]:
        """Return the ``-J`` properties passed to the load-test tool."""
        properties = {
            "threads": str(self.concurrency),
            "duration": str(self.duration_seconds),
            "rampup": str(self.ramp_up_seconds),
        }
        properties.update(self.custom_properties)
        return properties
