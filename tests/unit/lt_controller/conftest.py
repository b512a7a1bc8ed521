from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Iterator

import pytest

from lt_controller.notifications import Notification, NotificationBus
from lt_controller.store import InMemoryJobStore
from lt_runner.backends.base import HealthStatus
from lt_runner.models.context import JobContext
from lt_runner.models.events import (
    ExecutionEvent,
    ExecutionPhase,
    complete_event,
    phase_event,
    progress_event,
)

RESULT_CSV = (
    "timeStamp,elapsed,label,responseCode,success,bytes,grpThreads,allThreads\n"
    "1000,100,home,200,true,10,1,1\n"
    "1100,300,login,500,false,10,1,1\n"
)


class FakeBackend:
    """Scriptable backend: writes a result file and completes with ``exit_code``."""

    backend_type = "local"

    def __init__(
        self,
        exit_code: int = 0,
        *,
        error: str | None = None,
        write_result: bool = True,
        block: bool = False,
    ) -> None:
        self.exit_code = exit_code
        self.error = error
        self.write_result = write_result
        self.block = block
        self.contexts: list[JobContext] = []
        self.cancelled: list[int] = []
        self.started = threading.Event()
        self._release = threading.Event()

    def execute(self, context: JobContext) -> Iterator[ExecutionEvent]:
        self.contexts.append(context)
        yield phase_event(ExecutionPhase.EXECUTING, "Running fake tool")
        self.started.set()
        if self.block:
            self._release.wait(5)
            yield complete_event(-15)
            return
        yield progress_event(50)
        if self.write_result:
            context.result_path.parent.mkdir(parents=True, exist_ok=True)
            context.result_path.write_text(RESULT_CSV)
        yield complete_event(
            self.exit_code,
            result_file_path=str(context.result_path) if self.write_result else None,
            error=self.error,
        )

    def cancel(self, job_id: int) -> None:
        self.cancelled.append(job_id)
        self._release.set()

    def health_check(self) -> HealthStatus:
        return HealthStatus(True, "fake ready")


class Recorder:
    def __init__(self, bus: NotificationBus) -> None:
        self.items: list[Notification] = []
        bus.subscribe(self.items.append)

    def kinds(self) -> list[str]:
        return [item.kind.value for item in self.items]


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def bus() -> NotificationBus:
    return NotificationBus()


@pytest.fixture
def recorder(bus: NotificationBus) -> Recorder:
    return Recorder(bus)


@pytest.fixture
def script(tmp_path: Path) -> Path:
    path = tmp_path / "plan.jmx"
    path.write_text('<stringProp name="ThreadGroup.num_threads">${__P(threads,1)}</stringProp>')
    return path


def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    return _wait_until


@pytest.fixture
def make_backend() -> type[FakeBackend]:
    return FakeBackend
