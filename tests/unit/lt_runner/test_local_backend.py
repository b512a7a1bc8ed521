from __future__ import annotations

import time
from pathlib import Path

import pytest

from lt_runner.backends.local import LocalBackend, _LineSplitter
from lt_runner.models.config import LocalBackendConfig
from lt_runner.models.events import EventType


pytestmark = pytest.mark.unit_runner


def _types(events):
    return [event.type for event in events]


def test_successful_run_streams_logs_and_completes(fake_tool: Path, make_context) -> None:
    backend = LocalBackend(LocalBackendConfig(tool_path=fake_tool))
    context = make_context(env="staging")

    events = list(backend.execute(context))

    assert events[0].type is EventType.PHASE
    assert events[0].data["phase"] == "initializing"
    assert events[1].type is EventType.STATUS
    assert events[1].data["status"] == "running"
    assert events[-1].type is EventType.COMPLETE
    assert _types(events).count(EventType.COMPLETE) == 1

    logs = [(e.data["message"], e.data["level"]) for e in events if e.type is EventType.LOG]
    assert ("starting threads=5", "info") in logs
    assert ("warming up", "warn") in logs
    assert ("partial line without newline", "info") in logs
    command = next(message for message, _ in logs if message.startswith("Executing:"))
    assert "-Jthreads=5" in command
    assert "-Jduration=60" in command
    assert "-Jrampup=10" in command
    assert "-Jenv=staging" in command

    complete = events[-1].data
    assert complete["exitCode"] == 0
    assert complete["resultFilePath"] == str(context.result_path)
    assert complete["logFilePath"] == str(context.log_path)
    assert complete["startTime"] and complete["endTime"]


def test_nonzero_exit_is_reported(fake_tool: Path, make_context) -> None:
    backend = LocalBackend(LocalBackendConfig(tool_path=fake_tool))
    events = list(backend.execute(make_context(exit="3")))
    assert events[-1].data["exitCode"] == 3


def test_spawn_failure_yields_error_then_complete(tmp_path: Path, make_context) -> None:
    backend = LocalBackend(LocalBackendConfig(tool_path=tmp_path / "missing-tool"))
    events = list(backend.execute(make_context()))

    assert events[-2].type is EventType.ERROR
    assert events[-1].type is EventType.COMPLETE
    assert events[-1].data["exitCode"] == 1
    assert "Failed to start" in events[-1].data["error"]


def test_cancel_sends_sigterm_and_stream_completes(fake_tool: Path, make_context) -> None:
    backend = LocalBackend(LocalBackendConfig(tool_path=fake_tool), kill_grace_seconds=5.0)
    context = make_context(mode="sleep")

    events = []
    for event in backend.execute(context):
        events.append(event)
        if event.type is EventType.LOG and event.data["message"] == "ready":
            backend.cancel(context.job_id)
            backend.cancel(context.job_id)  # idempotent

    assert events[-1].type is EventType.COMPLETE
    assert events[-1].data["exitCode"] != 0


@pytest.mark.slow
def test_cancel_escalates_to_sigkill_after_grace(fake_tool: Path, make_context) -> None:
    grace = 0.5
    backend = LocalBackend(LocalBackendConfig(tool_path=fake_tool), kill_grace_seconds=grace)
    context = make_context(mode="ignore_term")

    events = []
    cancelled_at = None
    for event in backend.execute(context):
        events.append(event)
        if event.type is EventType.LOG and event.data["message"] == "ready":
            cancelled_at = time.monotonic()
            backend.cancel(context.job_id)
    finished_at = time.monotonic()

    assert cancelled_at is not None
    assert finished_at - cancelled_at >= grace
    assert events[-1].type is EventType.COMPLETE
    assert events[-1].data["exitCode"] == -9


def test_cancel_unknown_job_is_noop(fake_tool: Path) -> None:
    backend = LocalBackend(LocalBackendConfig(tool_path=fake_tool))
    backend.cancel(999)


def test_health_check(fake_tool: Path, tmp_path: Path) -> None:
    assert LocalBackend(LocalBackendConfig(tool_path=fake_tool)).health_check().ok

    missing = LocalBackend(LocalBackendConfig(tool_path=tmp_path / "nope")).health_check()
    assert not missing.ok
    assert "not found" in missing.message

    plain = tmp_path / "plain"
    plain.write_text("")
    plain.chmod(0o644)
    status = LocalBackend(LocalBackendConfig(tool_path=plain)).health_check()
    assert not status.ok
    assert "not executable" in status.message


def test_line_splitter_keeps_partial_lines() -> None:
    splitter = _LineSplitter()
    assert splitter.feed(b"one\ntw") == ["one"]
    assert splitter.feed(b"o\r\nthree") == ["two"]
    assert splitter.flush() == "three"
    assert splitter.flush() == ""
