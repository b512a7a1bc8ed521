"""Execution backend contract and helpers shared by the concrete backends."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterator, Protocol, runtime_checkable

from lt_runner.models.context import JobContext
from lt_runner.models.events import ExecutionEvent, progress_event


@dataclass(frozen=True)
class HealthStatus:
    """Outcome of a backend health check."""

    ok: bool
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"ok": self.ok, "message": self.message}


@runtime_checkable
class ExecutionBackend(Protocol):
    """A way of running one load-test job.

    ``execute`` is a generator: nothing happens until the caller starts
    iterating, each call starts a fresh execution, and the stream always ends
    with exactly one ``complete`` event.
    """

    backend_type: str

    def execute(self, context: JobContext) -> Iterator[ExecutionEvent]: ...

    def cancel(self, job_id: int) -> None: ...

    def health_check(self) -> HealthStatus: ...


def build_tool_args(
    tool_path: str,
    script_path: str,
    result_path: str,
    log_path: str,
    context: JobContext,
) -> list[str]:
    """Return the non-GUI command line for one execution."""
    args = [
        tool_path,
        "-n",
        "-t",
        script_path,
        "-l",
        result_path,
        "-j",
        log_path,
    ]
    for key, value in context.tool_properties().items():
        args.append(f"-J{key}={value}")
    return args


class ProgressEstimator:
    """Time-based progress for tools that do not report it themselves.

    Progress is ``elapsed / duration`` capped at 99 %; the last
    percent is reserved for the ``complete`` event.
    """

    def __init__(self, total_seconds: float, *, clock=time.monotonic) -> None:
        self._total = max(float(total_seconds), 0.0)
        self._clock = clock
        self._started = clock()
        self._last_percent = -1

    def poll(self) -> ExecutionEvent | None:
        """Return a progress event when the whole percentage changed."""
        if self._total <= 0:
            return None
        elapsed = self._clock() - self._started
        percent = min(99, int(elapsed * 100 / self._total))
        if percent <= self._last_percent:
            return None
        self._last_percent = percent
        return progress_event(percent)
