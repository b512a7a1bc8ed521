"""Run the load-test tool as a child process on this machine."""

from __future__ import annotations

import logging
import os
import selectors
import signal
import subprocess
import threading
from datetime import datetime, timezone
from typing import IO, Callable, Iterator

from lt_runner.backends.base import HealthStatus, ProgressEstimator, build_tool_args
from lt_runner.models.config import LOCAL_BACKEND, LocalBackendConfig
from lt_runner.models.context import JobContext
from lt_runner.models.events import (
    ExecutionEvent,
    ExecutionPhase,
    LogLevel,
    complete_event,
    error_event,
    log_event,
    phase_event,
    status_event,
)

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096


class _LineSplitter:
    """Accumulate raw chunks from one pipe and hand back complete lines."""

    def __init__(self) -> None:
        self._pending = bytearray()

    def feed(self, chunk: bytes) -> list[str]:
        self._pending.extend(chunk)
        lines: list[str] = []
        while True:
            idx = self._pending.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._pending[:idx])
            del self._pending[: idx + 1]
            lines.append(raw.decode("utf-8", errors="replace").rstrip("\r"))
        return lines

    def flush(self) -> str:
        tail = bytes(self._pending).decode("utf-8", errors="replace")
        self._pending.clear()
        return tail.rstrip("\r\n")


def _signal_group(proc: subprocess.Popen[bytes], sig: int) -> None:
    if proc.poll() is not None:
        return
    try:
        os.killpg(os.getpgid(proc.pid), sig)
    except ProcessLookupError:
        return
    except OSError:
        proc.send_signal(sig)


class LocalBackend:
    """Spawn the tool in non-GUI mode and stream its output as events."""

    backend_type = LOCAL_BACKEND

    def __init__(
        self,
        config: LocalBackendConfig,
        *,
        kill_grace_seconds: float = 5.0,
        select_timeout: float = 0.5,
        popen: Callable[..., subprocess.Popen[bytes]] = subprocess.Popen,
    ) -> None:
        self.config = config
        self.kill_grace_seconds = kill_grace_seconds
        self._select_timeout = select_timeout
        self._popen = popen
        self._lock = threading.Lock()
        self._processes: dict[int, subprocess.Popen[bytes]] = {}
        self._kill_timers: dict[int, threading.Timer] = {}

    def execute(self, context: JobContext) -> Iterator[ExecutionEvent]:
        tool = str(self.config.tool_path)
        yield phase_event(ExecutionPhase.INITIALIZING, "Preparing local execution")
        yield status_event("running")

        context.result_path.parent.mkdir(parents=True, exist_ok=True)
        context.log_path.parent.mkdir(parents=True, exist_ok=True)

        args = build_tool_args(
            tool,
            str(context.script_path),
            str(context.result_path),
            str(context.log_path),
            context,
        )
        yield log_event(f"Executing: {' '.join(args)}")
        yield phase_event(ExecutionPhase.EXECUTING, "Running load test")

        start_time = datetime.now(timezone.utc)
        try:
            proc = self._spawn(context.job_id, args)
        except OSError as exc:
            message = f"Failed to start {tool}: {exc}"
            logger.error("Job %s: %s", context.job_id, message)
            yield error_event(message)
            yield complete_event(
                1,
                start_time=start_time,
                end_time=datetime.now(timezone.utc),
                error=message,
            )
            return

        exit_code = 1
        try:
            yield from self._stream_output(proc, ProgressEstimator(context.duration_seconds))
            exit_code = proc.wait()
        finally:
            self._release(context.job_id, proc)

        end_time = datetime.now(timezone.utc)
        logger.info("Job %s: local tool exited with code %s", context.job_id, exit_code)
        yield phase_event(ExecutionPhase.COLLECTING, "Collecting results")
        result_file = str(context.result_path) if context.result_path.exists() else None
        log_file = str(context.log_path) if context.log_path.exists() else None
        if result_file is None:
            yield log_event(f"Result file not found: {context.result_path}", LogLevel.WARN)
        yield complete_event(
            exit_code,
            result_file_path=result_file,
            log_file_path=log_file,
            start_time=start_time,
            end_time=end_time,
        )

    def cancel(self, job_id: int) -> None:
        with self._lock:
            proc = self._processes.get(job_id)
            if proc is None or proc.poll() is not None:
                return
            if job_id in self._kill_timers:
                return
            timer = threading.Timer(
                self.kill_grace_seconds, self._force_kill, args=(job_id, proc)
            )
            timer.daemon = True
            self._kill_timers[job_id] = timer
        logger.info("Job %s: sending SIGTERM to pid %s", job_id, proc.pid)
        _signal_group(proc, signal.SIGTERM)
        timer.start()

    def health_check(self) -> HealthStatus:
        path = self.config.tool_path
        if not path.exists():
            return HealthStatus(False, f"Tool not found at {path}")
        if not os.access(path, os.X_OK):
            return HealthStatus(False, f"Tool at {path} is not executable")
        return HealthStatus(True, f"Tool available at {path}")

    def _spawn(self, job_id: int, args: list[str]) -> subprocess.Popen[bytes]:
        env = os.environ.copy()
        if self.config.tool_home:
            env["JMETER_HOME"] = str(self.config.tool_home)
        proc = self._popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
            start_new_session=True,
        )
        with self._lock:
            self._processes[job_id] = proc
        return proc

    def _stream_output(
        self, proc: subprocess.Popen[bytes], progress: ProgressEstimator
    ) -> Iterator[ExecutionEvent]:
        streams: list[tuple[IO[bytes] | None, LogLevel]] = [
            (proc.stdout, LogLevel.INFO),
            (proc.stderr, LogLevel.WARN),
        ]
        selector = selectors.DefaultSelector()
        for stream, level in streams:
            if stream is not None:
                selector.register(stream, selectors.EVENT_READ, (level, _LineSplitter()))
        try:
            while selector.get_map():
                for key, _mask in selector.select(timeout=self._select_timeout):
                    level, splitter = key.data
                    chunk = os.read(key.fd, _READ_CHUNK)
                    if not chunk:
                        selector.unregister(key.fileobj)
                        tail = splitter.flush()
                        if tail.strip():
                            yield log_event(tail, level)
                        continue
                    for line in splitter.feed(chunk):
                        if line.strip():
                            yield log_event(line, level)
                event = progress.poll()
                if event is not None:
                    yield event
        finally:
            selector.close()

    def _force_kill(self, job_id: int, proc: subprocess.Popen[bytes]) -> None:
        if proc.poll() is None:
            logger.warning(
                "Job %s: still running after %.1fs grace, sending SIGKILL",
                job_id,
                self.kill_grace_seconds,
            )
            _signal_group(proc, signal.SIGKILL)

    def _release(self, job_id: int, proc: subprocess.Popen[bytes]) -> None:
        if proc.poll() is None:
            # Consumer abandoned the stream; do not leave an orphan behind.
            _signal_group(proc, signal.SIGKILL)
            proc.wait()
        with self._lock:
            self._processes.pop(job_id, None)
            timer = self._kill_timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                stream.close()
