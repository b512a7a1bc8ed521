"""Trigger a parameterized CI build and follow it until it finishes."""

from __future__ import annotations

import base64
import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generator, Iterator, Mapping, TextIO
from urllib import error, parse, request

from lt_common.errors import BackendError, BackendExecutionError, CiBuildTimeoutError
from lt_runner.backends.base import HealthStatus, ProgressEstimator
from lt_runner.models.config import CI_BACKEND, CiTriggerBackendConfig
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

_QUEUE_ITEM_RE = re.compile(r"/queue/item/(\d+)/?$")


@dataclass(frozen=True)
class CiResponse:
    status: int
    headers: Mapping[str, str]
    body: bytes

    def json(self) -> dict[str, Any] | None:
        if not self.body:
            return None
        try:
            parsed = json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        return parsed if isinstance(parsed, dict) else None

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return None


@dataclass
class CiClient:
    """Minimal HTTP client for a Jenkins-compatible CI server."""

    base_url: str
    username: str = ""
    api_token: str = ""
    timeout_seconds: float = 30.0
    _auth_header: str | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        parsed = parse.urlparse(self.base_url)
        if parsed.scheme not in {"http", "https"}:
            raise ValueError("CI base_url must start with http:// or https://")
        self.base_url = self.base_url.rstrip("/")
        if self.username or self.api_token:
            token = base64.b64encode(
                f"{self.username}:{self.api_token}".encode("utf-8")
            ).decode("ascii")
            self._auth_header = f"Basic {token}"

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def job_url(self, job_name: str) -> str:
        return self.url_for(f"job/{parse.quote(job_name, safe='')}/")

    def request(
        self,
        method: str,
        path: str,
        *,
        form: Mapping[str, str] | None = None,
        expected_statuses: set[int] | None = None,
        timeout: float | None = None,
    ) -> CiResponse:
        expected = expected_statuses or {200}
        url = self.url_for(path)
        headers = {"Accept": "application/json"}
        if self._auth_header:
            headers["Authorization"] = self._auth_header
        data = None
        if form is not None:
            data = parse.urlencode(form).encode("utf-8")
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        elif method == "POST":
            data = b""

        req = request.Request(url, data=data, headers=headers, method=method)
        try:
            with request.urlopen(  # nosec B310
                req, timeout=timeout or self.timeout_seconds
            ) as resp:
                response = CiResponse(resp.status, dict(resp.headers.items()), resp.read())
        except error.HTTPError as exc:
            body = exc.read() if exc.fp else b""
            response = CiResponse(exc.code, dict(exc.headers.items()) if exc.headers else {}, body)
        except error.URLError as exc:
            raise BackendExecutionError(
                f"CI request failed: {exc.reason}",
                context={"method": method, "url": url},
                cause=exc,
            ) from exc
        if response.status not in expected:
            raise BackendError(
                f"CI API error {response.status}: {response.text()[:200]}",
                context={"method": method, "url": url, "status": response.status},
            )
        return response


class CiTriggerBackend:
    """Run a job by triggering ``buildWithParameters`` on a CI server."""

    backend_type = CI_BACKEND

    def __init__(
        self,
        config: CiTriggerBackendConfig,
        *,
        poll_interval: float = 5.0,
        queue_poll_interval: float = 2.0,
        queue_timeout: float = 300.0,
        health_timeout: float = 5.0,
        client: CiClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.poll_interval = poll_interval
        self.queue_poll_interval = queue_poll_interval
        self.queue_timeout = queue_timeout
        self.health_timeout = health_timeout
        self.client = client or CiClient(
            base_url=config.base_url,
            username=config.username,
            api_token=config.api_token,
        )
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._builds: dict[int, str] = {}
        self._queued: dict[int, str] = {}
        self._cancelled: set[int] = set()

    def execute(self, context: JobContext) -> Iterator[ExecutionEvent]:
        yield phase_event(ExecutionPhase.INITIALIZING, "Triggering CI build")
        yield status_event("running")

        job_id = context.job_id
        start_time: datetime | None = None
        try:
            queue_url = self._trigger(context)
            with self._lock:
                self._queued[job_id] = queue_url
            yield log_event(f"Build queued: {queue_url}")
            build_number = self._wait_for_build_number(queue_url)
            build_url = f"{self.client.job_url(self.config.job_name)}{build_number}/"
            with self._lock:
                self._queued.pop(job_id, None)
                self._builds[job_id] = build_url
                stop_now = job_id in self._cancelled
            if stop_now:
                # Cancelled while the queue item was turning into a build.
                self._stop_build(job_id, build_url)
            yield log_event(f"Build #{build_number} started: {build_url}")

            yield phase_event(ExecutionPhase.EXECUTING, f"CI build #{build_number} running")
            start_time = datetime.now(timezone.utc)
            build_result = yield from self._follow_build(context, build_url)
            end_time = datetime.now(timezone.utc)

            yield phase_event(ExecutionPhase.COLLECTING, "Downloading build artifacts")
            result_file = yield from self._download_artifact(context, build_url)
            log_file = str(context.log_path) if context.log_path.exists() else None

            yield complete_event(
                0 if build_result == "SUCCESS" else 1,
                result_file_path=result_file,
                log_file_path=log_file,
                start_time=start_time,
                end_time=end_time,
                ciUrl=build_url,
                buildNumber=build_number,
                buildResult=build_result,
            )
        except Exception as exc:
            message = f"CI execution failed: {exc}"
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
                self._queued.pop(job_id, None)
                self._builds.pop(job_id, None)
                self._cancelled.discard(job_id)

    def cancel(self, job_id: int) -> None:
        """Stop the running build, or drop the queue item if it has not started."""
        with self._lock:
            build_url = self._builds.get(job_id)
            queue_url = self._queued.get(job_id)
            if build_url is None and queue_url is None:
                return
            self._cancelled.add(job_id)
        if build_url is not None:
            self._stop_build(job_id, build_url)
        else:
            self._cancel_queue_item(job_id, queue_url)

    def _stop_build(self, job_id: int, build_url: str) -> None:
        logger.info("Job %s: stopping CI build %s", job_id, build_url)
        try:
            self.client.request("POST", f"{build_url}stop", expected_statuses={200, 201, 302})
        except BackendError as exc:
            logger.warning("Job %s: failed to stop CI build: %s", job_id, exc)

    def _cancel_queue_item(self, job_id: int, queue_url: str) -> None:
        match = _QUEUE_ITEM_RE.search(queue_url)
        if match is None:
            logger.warning("Job %s: cannot tell the queue item id from %s", job_id, queue_url)
            return
        item_id = match.group(1)
        logger.info("Job %s: cancelling CI queue item %s", job_id, item_id)
        try:
            self.client.request(
                "POST",
                f"queue/cancelItem?id={item_id}",
                expected_statuses={200, 204, 302},
            )
        except BackendError as exc:
            logger.warning("Job %s: failed to cancel CI queue item: %s", job_id, exc)

    def health_check(self) -> HealthStatus:
        url = f"{self.client.job_url(self.config.job_name)}api/json"
        try:
            response = self.client.request("GET", url, timeout=self.health_timeout)
        except BackendError as exc:
            return HealthStatus(False, f"CI job {self.config.job_name} unreachable: {exc}")
        data = response.json() or {}
        name = data.get("name") or self.config.job_name
        return HealthStatus(True, f"CI job {name} reachable")

    def _trigger(self, context: JobContext) -> str:
        params = {
            "SCRIPT_PATH": str(context.script_path),
            "USER_COUNT": str(context.concurrency),
            "DURATION_SECONDS": str(context.duration_seconds),
            "RAMP_UP_SECONDS": str(context.ramp_up_seconds),
        }
        params.update(context.custom_properties)
        response = self.client.request(
            "POST",
            f"{self.client.job_url(self.config.job_name)}buildWithParameters",
            form=params,
            expected_statuses={200, 201},
        )
        location = response.header("Location")
        if not location:
            raise BackendExecutionError(
                "CI server did not return a queue item location",
                context={"job_name": self.config.job_name},
            )
        return location if location.endswith("/") else f"{location}/"

    def _wait_for_build_number(self, queue_url: str) -> int:
        deadline = self._clock() + self.queue_timeout
        while True:
            data = self.client.request("GET", f"{queue_url}api/json").json() or {}
            if data.get("cancelled"):
                raise BackendExecutionError(
                    "CI queue item was cancelled", context={"queue_url": queue_url}
                )
            executable = data.get("executable")
            if isinstance(executable, dict) and executable.get("number") is not None:
                return int(executable["number"])
            if self._clock() >= deadline:
                raise CiBuildTimeoutError(
                    f"Build did not start within {self.queue_timeout:.0f}s",
                    context={"queue_url": queue_url},
                )
            self._sleep(self.queue_poll_interval)

    def _follow_build(self, context: JobContext, build_url: str) -> Iterator[ExecutionEvent]:
        context.log_path.parent.mkdir(parents=True, exist_ok=True)
        progress = ProgressEstimator(context.duration_seconds, clock=self._clock)
        offset = 0
        pending = ""
        with context.log_path.open("a", encoding="utf-8") as console:
            while True:
                offset, pending = yield from self._read_console(
                    build_url, offset, pending, console
                )
                info = self.client.request("GET", f"{build_url}api/json").json() or {}
                if not info.get("building", False):
                    # Output written between the last read and the status check.
                    offset, pending = yield from self._read_console(
                        build_url, offset, pending, console
                    )
                    if pending.strip():
                        yield log_event(pending.rstrip("\r"))
                    result = str(info.get("result") or "UNKNOWN")
                    yield log_event(
                        f"Build finished with result {result}",
                        LogLevel.INFO if result == "SUCCESS" else LogLevel.WARN,
                    )
                    return result
                event = progress.poll()
                if event is not None:
                    yield event
                self._sleep(self.poll_interval)

    def _read_console(
        self, build_url: str, offset: int, pending: str, console: TextIO
    ) -> Generator[ExecutionEvent, None, tuple[int, str]]:
        """Fetch console text from ``offset``; returns the new offset and partial line."""
        response = self.client.request(
            "GET", f"{build_url}logText/progressiveText?start={offset}"
        )
        text = response.text()
        if text:
            console.write(text)
            pending += text
            *lines, pending = pending.split("\n")
            for line in lines:
                if line.strip():
                    yield log_event(line.rstrip("\r"))
        size = response.header("X-Text-Size")
        if size is not None and size.isdigit():
            offset = int(size)
        return offset, pending

    def _download_artifact(
        self, context: JobContext, build_url: str
    ) -> Iterator[ExecutionEvent]:
        artifact = self.config.result_artifact
        try:
            response = self.client.request(
                "GET", f"{build_url}artifact/{parse.quote(artifact)}"
            )
        except BackendError as exc:
            yield log_event(f"Result artifact {artifact} not available: {exc}", LogLevel.WARN)
            return None
        path = Path(context.result_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(response.body)
        yield log_event(f"Downloaded {artifact} to {path}")
        return str(path)
