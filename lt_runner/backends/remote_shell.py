"""Run the load-test tool on a remote load generator over SSH (Fabric)."""

from __future__ import annotations

import logging
import posixpath
import queue
import shlex
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from fabric import Connection
from invoke.exceptions import UnexpectedExit

from lt_common.errors import BackendExecutionError
from lt_runner.backends.base import HealthStatus, ProgressEstimator, build_tool_args
from lt_runner.models.config import SSH_BACKEND, RemoteShellBackendConfig
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


class _StreamWriter:
    """File-like sink that splits remote output into lines for a callback."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        self._callback = callback
        self._pending = ""
        self._lock = threading.Lock()

    def write(self, data: str) -> int:
        if not data:
            return 0
        with self._lock:
            self._pending += data
            *lines, self._pending = self._pending.split("\n")
        for line in lines:
            line = line.rstrip("\r")
            if line.strip():
                self._callback(line)
        return len(data)

    def flush(self) -> None:
        with self._lock:
            tail, self._pending = self._pending, ""
        if tail.strip():
            self._callback(tail.rstrip("\r"))


class RemoteShellBackend:
    """Upload a script, run the tool remotely and download its outputs."""

    backend_type = SSH_BACKEND

    def __init__(
        self,
        config: RemoteShellBackendConfig,
        *,
        poll_interval: float = 0.5,
        health_timeout: float = 5.0,
    ) -> None:
        self.config = config
        self.poll_interval = poll_interval
        self.health_timeout = health_timeout
        self._lock = threading.Lock()
        self._connections: dict[int, Connection] = {}

    def execute(self, context: JobContext) -> Iterator[ExecutionEvent]:
        cfg = self.config
        yield phase_event(ExecutionPhase.INITIALIZING, f"Connecting to {cfg.host}")
        yield status_event("running")

        remote_dir = cfg.remote_work_dir.rstrip("/") or "/"
        remote_script = posixpath.join(remote_dir, context.script_path.name)
        remote_result = posixpath.join(remote_dir, "results", context.result_path.name)
        remote_log = posixpath.join(remote_dir, "logs", context.log_path.name)

        start_time: datetime | None = None
        conn = self._connect()
        with self._lock:
            self._connections[context.job_id] = conn
        try:
            conn.open()
            yield log_event(f"Connected to {cfg.username}@{cfg.host}:{cfg.port}")

            yield phase_event(ExecutionPhase.UPLOADING, "Uploading test script")
            self._prepare_dirs(
                conn, [posixpath.join(remote_dir, "results"), posixpath.join(remote_dir, "logs")]
            )
            conn.put(str(context.script_path), remote_script)
            yield log_event(f"Uploaded {context.script_path.name} to {remote_script}")

            yield phase_event(ExecutionPhase.EXECUTING, "Running load test")
            command = shlex.join(
                build_tool_args(cfg.tool_path, remote_script, remote_result, remote_log, context)
            )
            yield log_event(f"Executing: {command}")
            start_time = datetime.now(timezone.utc)
            remote_exit = yield from self._run_streaming(context, conn, command)
            end_time = datetime.now(timezone.utc)
            if remote_exit != 0:
                yield log_event(
                    f"Remote process exited with code {remote_exit}", LogLevel.WARN
                )

            yield phase_event(ExecutionPhase.COLLECTING, "Downloading results")
            context.result_path.parent.mkdir(parents=True, exist_ok=True)
            context.log_path.parent.mkdir(parents=True, exist_ok=True)
            result_file = yield from self._download(conn, remote_result, context.result_path, "result")
            log_file = yield from self._download(conn, remote_log, context.log_path, "log")

            yield phase_event(ExecutionPhase.CLEANUP, "Removing remote files")
            self._cleanup(conn, [remote_script, remote_result, remote_log])

            yield complete_event(
                0,
                result_file_path=result_file,
                log_file_path=log_file,
                start_time=start_time,
                end_time=end_time,
                remoteExitCode=remote_exit,
            )
        except Exception as exc:
            message = f"Remote execution on {cfg.host} failed: {exc}"
            logger.error("Job %s: %s", context.job_id, message)
            yield error_event(message)
            yield complete_event(
                1,
                start_time=start_time,
                end_time=datetime.now(timezone.utc),
                error=message,
            )
        finally:
            with self._lock:
                self._connections.pop(context.job_id, None)
            conn.close()

    def cancel(self, job_id: int) -> None:
        with self._lock:
            conn = self._connections.get(job_id)
        if conn is None:
            return
        pattern = f"{posixpath.basename(self.config.tool_path)}.*-n"
        logger.info("Job %s: stopping remote tool on %s", job_id, self.config.host)
        try:
            conn.run(
                f"pkill -f {shlex.quote(pattern)} || true",
                hide=True,
                warn=True,
                in_stream=False,
            )
        except Exception as exc:
            logger.warning("Job %s: remote pkill failed: %s", job_id, exc)
        finally:
            conn.close()

    def health_check(self) -> HealthStatus:
        conn = self._connect(connect_timeout=self.health_timeout)
        try:
            result = conn.run(
                f"{shlex.quote(self.config.tool_path)} --version 2>&1 || echo 'not found'",
                hide=True,
                warn=True,
                in_stream=False,
            )
        except Exception as exc:
            return HealthStatus(False, f"SSH connection to {self.config.host} failed: {exc}")
        finally:
            conn.close()
        output = (result.stdout or "").strip()
        if "not found" in output.lower():
            return HealthStatus(False, f"Tool not found at {self.config.tool_path} on {self.config.host}")
        return HealthStatus(True, f"Connected to {self.config.host}")

    def _connect(self, connect_timeout: float | None = None) -> Connection:
        cfg = self.config
        connect_kwargs: dict[str, Any] = {"banner_timeout": 30}
        if cfg.private_key_path is not None:
            connect_kwargs["key_filename"] = str(Path(cfg.private_key_path).expanduser())
        elif cfg.password:
            connect_kwargs["password"] = cfg.password
        return Connection(
            host=cfg.host,
            user=cfg.username,
            port=cfg.port,
            connect_timeout=connect_timeout,
            connect_kwargs=connect_kwargs,
        )

    def _run_streaming(
        self, context: JobContext, conn: Connection, command: str
    ) -> Iterator[ExecutionEvent]:
        lines: queue.Queue[tuple[str, LogLevel]] = queue.Queue()
        out_writer = _StreamWriter(lambda line: lines.put((line, LogLevel.INFO)))
        err_writer = _StreamWriter(lambda line: lines.put((line, LogLevel.WARN)))
        promise = conn.run(
            command,
            asynchronous=True,
            hide=False,
            warn=True,
            in_stream=False,
            out_stream=out_writer,
            err_stream=err_writer,
        )
        progress = ProgressEstimator(context.duration_seconds)
        while True:
            finished = promise.runner.process_is_finished
            while True:
                try:
                    line, level = lines.get_nowait()
                except queue.Empty:
                    break
                yield log_event(line, level)
            if finished:
                break
            event = progress.poll()
            if event is not None:
                yield event
            time.sleep(self.poll_interval)

        try:
            result = promise.join()
        except Exception as exc:
            raise BackendExecutionError(
                "Remote command failed",
                context={"job_id": context.job_id, "host": self.config.host},
                cause=exc,
            ) from exc
        finally:
            out_writer.flush()
            err_writer.flush()
        while not lines.empty():
            line, level = lines.get_nowait()
            yield log_event(line, level)
        return int(result.exited)

    def _prepare_dirs(self, conn: Connection, paths: list[str]) -> None:
        try:
            conn.run("mkdir -p " + shlex.join(paths), hide=True, in_stream=False)
        except UnexpectedExit as exc:
            raise BackendExecutionError(
                f"Cannot create remote work directories: {exc.result.stderr or exc}",
                context={"host": self.config.host, "paths": paths},
                cause=exc,
            ) from exc

    def _download(
        self, conn: Connection, remote: str, local: Path, label: str
    ) -> Iterator[ExecutionEvent]:
        try:
            conn.get(remote, str(local))
        except OSError as exc:
            yield log_event(f"Could not download {label} file {remote}: {exc}", LogLevel.WARN)
            return None
        yield log_event(f"Downloaded {label} file to {local}")
        return str(local)

    @staticmethod
    def _cleanup(conn: Connection, paths: list[str]) -> None:
        try:
            conn.run("rm -f " + shlex.join(paths), hide=True, warn=True, in_stream=False)
        except Exception as exc:
            logger.debug("Remote cleanup failed: %s", exc)
