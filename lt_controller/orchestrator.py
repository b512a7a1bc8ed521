"""Job-lifecycle facade tying queue, scheduler, backends and reducer together."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from lt_common.errors import (
    InjectionError,
    InvalidTransitionError,
    LTError,
    ResultParseError,
)
from lt_controller.cooldown import CooldownTimer
from lt_controller.models.jobs import Job, JobStatus, utcnow
from lt_controller.notifications import (
    Notification,
    NotificationBus,
    NotificationKind,
)
from lt_controller.queue import JobQueue
from lt_controller.scheduler import Scheduler, SchedulerStatus
from lt_controller.settings import OrchestratorSettings
from lt_controller.store import JobStore, require_job
from lt_runner.backends.base import ExecutionBackend, HealthStatus
from lt_runner.backends.registry import BackendRegistry
from lt_runner.models.config import collect_backend_configs
from lt_runner.models.context import JobContext
from lt_runner.models.events import EventType, ExecutionEvent
from lt_runner.results.reducer import ResultReducer
from lt_runner.scripts.injector import InjectionParams, ParameterInjector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnqueueResult:
    job_id: int
    position: int


@dataclass(frozen=True)
class OrchestratorStatus:
    initialized: bool
    scheduler: SchedulerStatus
    configured_backends: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "scheduler": self.scheduler.to_dict(),
            "configured_backends": list(self.configured_backends),
        }


def result_paths(data_dir: Path, job_id: int) -> tuple[Path, Path]:
    """Return fresh ``(result, log)`` paths for one execution of a job."""
    stamp = utcnow().strftime("%Y-%m-%dT%H-%M-%S")
    base = f"test_{job_id}_{stamp}"
    return data_dir / "results" / f"{base}.csv", data_dir / "logs" / f"{base}.log"


class Orchestrator:
    """Public entry point for enqueueing, cancelling and running jobs.

    Construct one per process. ``initialize`` is idempotent and runs lazily on
    the first ``enqueue``.
    """

    def __init__(
        self,
        store: JobStore,
        settings: OrchestratorSettings | None = None,
        *,
        registry: BackendRegistry | None = None,
        bus: NotificationBus | None = None,
        reducer: ResultReducer | None = None,
        injector: ParameterInjector | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or OrchestratorSettings()
        self.bus = bus or NotificationBus()
        self.queue = JobQueue(store, self.bus)
        self.cooldown = CooldownTimer(self.settings.default_cooldown_seconds, self.bus)
        self.scheduler = Scheduler(
            self.queue,
            self.cooldown,
            bus=self.bus,
            execute=self.execute_job,
            poll_interval=self.settings.poll_interval_seconds,
        )
        self.reducer = reducer or ResultReducer()
        self.injector = injector or ParameterInjector()
        self._registry = registry
        self._init_lock = threading.Lock()
        self._initialized = False
        self._cancel_requested: set[int] = set()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def registry(self) -> BackendRegistry:
        return self._ensure_registry()

    def initialize(self, *, start_scheduler: bool = True) -> None:
        """Create data dirs, configure backends, restore the queue, start the loop."""
        with self._init_lock:
            if self._initialized:
                return
            self.settings.ensure_dirs()
            self._ensure_registry()
            self.queue.restore()
            if start_scheduler:
                self.scheduler.start()
            self._initialized = True
        logger.info("Orchestrator initialized (backends: %s)", ", ".join(self.registry.types()))
        self.bus.emit(NotificationKind.INITIALIZED, backends=self.registry.types())

    def enqueue(self, job_id: int, priority: int = 0) -> EnqueueResult:
        self.initialize()
        self.queue.enqueue(job_id, priority)
        self.scheduler.wake()
        return EnqueueResult(job_id=job_id, position=self.queue.position(job_id))

    def cancel(self, job_id: int) -> bool:
        """Cancel a queued or running job; False when there was nothing to cancel."""
        if self.queue.remove(job_id):
            return True

        job = require_job(self.store, job_id)
        if job.status is JobStatus.QUEUED:
            # Dequeued by the scheduler but not started yet.
            self.store.update_job(job_id, status=JobStatus.CANCELLED, completed_at=utcnow())
            logger.info("Job %s cancelled before start", job_id)
            return True
        if job.status is not JobStatus.RUNNING:
            logger.warning("Job %s is %s; nothing to cancel", job_id, job.status.value)
            return False

        self._cancel_requested.add(job_id)
        self.store.update_job(job_id, status=JobStatus.CANCELLED, completed_at=utcnow())
        if job.backend_type in self.registry:
            self.registry.get(job.backend_type).cancel(job_id)
        logger.info("Job %s cancelled while running", job_id)
        return True

    def status(self) -> OrchestratorStatus:
        backends = self._registry.types() if self._registry is not None else []
        return OrchestratorStatus(
            initialized=self._initialized,
            scheduler=self.scheduler.status(),
            configured_backends=backends,
        )

    def health_check(self, backend_type: str) -> HealthStatus:
        return self.registry.health_check(backend_type)

    def subscribe(self, handler: Callable[[Notification], None]) -> Callable[[], None]:
        return self.bus.subscribe(handler)

    def is_idle(self) -> bool:
        return self.queue.is_empty and not self.queue.is_processing

    def shutdown(self, timeout: float | None = None) -> None:
        self.scheduler.stop()
        self.cooldown.cancel()
        if timeout is not None:
            self.scheduler.join(timeout)
        logger.info("Orchestrator shut down")
        self.bus.emit(NotificationKind.SHUTDOWN)

    def execute_job(self, job_id: int) -> None:
        """Run one job end to end; called from the scheduler thread."""
        job = require_job(self.store, job_id)
        if job.status is not JobStatus.QUEUED:
            logger.info("Skipping job %s in status %s", job_id, job.status.value)
            return

        script = Path(job.script_path)
        if not job.script_path or not script.is_file():
            self._fail(job_id, f"Script not found: {job.script_path}")
            return
        if job.backend_type not in self.registry:
            self._fail(
                job_id,
                self.registry.config_error(job.backend_type)
                or f"Backend '{job.backend_type}' is not configured",
            )
            return
        backend = self.registry.get(job.backend_type)

        result_path, log_path = result_paths(self.settings.data_dir, job_id)
        ramp_up = (
            job.ramp_up_seconds
            if job.ramp_up_seconds is not None
            else self.settings.default_ramp_up_seconds
        )
        custom = job.custom_properties
        prepared = self._prepare_script(job, script, ramp_up, custom)
        context = JobContext(
            job_id=job_id,
            script_path=prepared,
            result_path=result_path,
            log_path=log_path,
            concurrency=job.concurrency,
            duration_seconds=job.duration_seconds,
            ramp_up_seconds=ramp_up,
            custom_properties=custom,
        )

        try:
            self.store.update_job(
                job_id,
                status=JobStatus.RUNNING,
                started_at=utcnow(),
                progress_percent=0,
                result_file=str(result_path),
                log_file=str(log_path),
            )
        except InvalidTransitionError:
            logger.info("Job %s was cancelled before it started", job_id)
            return

        completion: Optional[ExecutionEvent] = None
        finished = threading.Event()
        watcher = threading.Thread(
            target=self._watch_for_cancel,
            args=(job_id, backend, finished),
            name=f"lt-cancel-watch-{job_id}",
            daemon=True,
        )
        watcher.start()
        try:
            for event in backend.execute(context):
                self._apply_event(job_id, event)
                if event.is_terminal:
                    completion = event
        except Exception as exc:
            logger.exception("Backend %s crashed while running job %s", backend.backend_type, job_id)
            self._fail(job_id, str(exc))
            return
        finally:
            finished.set()
            watcher.join()
            self._cancel_requested.discard(job_id)

        self._finish(job_id, context, completion)
        if job.cooldown_seconds:
            self.cooldown.set_default_duration(job.cooldown_seconds)

    def _watch_for_cancel(
        self, job_id: int, backend: ExecutionBackend, finished: threading.Event
    ) -> None:
        """Forward a cancel recorded by another process to the backend."""
        while not finished.wait(self.settings.poll_interval_seconds):
            if job_id in self._cancel_requested:
                return
            try:
                job = self.store.get_job(job_id)
            except LTError:
                logger.exception("Cannot read job %s while watching for cancellation", job_id)
                continue
            if job is not None and job.status is JobStatus.CANCELLED:
                self._cancel_requested.add(job_id)
                logger.info("Job %s was cancelled from another process", job_id)
                backend.cancel(job_id)
                return

    def _prepare_script(
        self, job: Job, script: Path, ramp_up: int, custom: Dict[str, str]
    ) -> Path:
        params = InjectionParams(
            concurrency=job.concurrency,
            duration_seconds=job.duration_seconds,
            ramp_up_seconds=ramp_up,
            custom_properties=custom,
        )
        try:
            return self.injector.inject(script, self.settings.temp_dir, params)
        except InjectionError as exc:
            message = f"Parameter injection failed, using original script: {exc}"
            logger.warning("Job %s: %s", job.id, message)
            self.bus.emit(NotificationKind.WARNING, job.id, message=message)
            return script

    def _apply_event(self, job_id: int, event: ExecutionEvent) -> None:
        data = event.data
        updates: Dict[str, Any] = {}
        if event.type is EventType.PHASE:
            updates["current_phase"] = data.get("phase")
        elif event.type is EventType.PROGRESS:
            updates["progress_percent"] = int(data.get("percent", 0))
        elif event.type is EventType.ERROR:
            updates["error_log"] = data.get("message")
        elif event.type is EventType.COMPLETE:
            exit_code = int(data.get("exitCode", 1))
            updates["exit_code"] = exit_code
            if exit_code != 0 and data.get("error"):
                updates["error_log"] = data["error"]
        elif event.type is EventType.LOG:
            logger.debug("Job %s [%s] %s", job_id, data.get("level"), data.get("message"))
        if updates:
            self.store.update_job(job_id, **updates)
        self.bus.emit(NotificationKind.EXECUTION_EVENT, job_id, event=event.to_dict())

    def _finish(
        self, job_id: int, context: JobContext, completion: Optional[ExecutionEvent]
    ) -> None:
        job = require_job(self.store, job_id)
        if job.status is JobStatus.CANCELLED:
            logger.info("Job %s ended after cancellation", job_id)
            return

        if completion is None:
            self._fail(job_id, "Backend stream ended without a completion event")
            return
        exit_code = int(completion.data.get("exitCode", 1))
        if exit_code != 0:
            self.store.update_job(
                job_id,
                status=JobStatus.FAILED,
                completed_at=utcnow(),
                current_phase=None,
                error_log=job.error_log or f"Load test exited with code {exit_code}",
            )
            logger.warning("Job %s failed with exit code %s", job_id, exit_code)
            return

        result_file = Path(completion.data.get("resultFilePath") or context.result_path)
        done: Dict[str, Any] = {
            "status": JobStatus.COMPLETED,
            "completed_at": utcnow(),
            "progress_percent": 100,
            "current_phase": None,
            "result_file": str(result_file),
            "log_file": completion.data.get("logFilePath") or str(context.log_path),
        }
        if not result_file.is_file():
            done["error_log"] = f"Result file not available: {result_file}"
            self.store.update_job(job_id, **done)
            logger.warning("Job %s completed without a result file", job_id)
            return

        try:
            summary = self.reducer.reduce(result_file)
        except ResultParseError as exc:
            done["error_log"] = f"Result parsing failed: {exc}"
            self.store.update_job(job_id, **done)
            logger.warning("Job %s: result parsing failed: %s", job_id, exc)
            return

        done.update(summary.job_fields())
        self.store.update_job(job_id, **done)
        if summary.transactions:
            self.store.insert_transaction_stats(job_id, summary.transactions)
        logger.info(
            "Job %s completed: %d samples, %.2f%% errors",
            job_id,
            summary.total_samples,
            summary.error_percent,
        )

    def _fail(self, job_id: int, message: str) -> None:
        job = require_job(self.store, job_id)
        if job.status is JobStatus.CANCELLED:
            return
        if job.status is JobStatus.QUEUED:
            # Never started; go through running to keep transitions forward-only.
            self.store.update_job(job_id, status=JobStatus.RUNNING, started_at=utcnow())
        self.store.update_job(
            job_id,
            status=JobStatus.FAILED,
            error_log=message,
            completed_at=utcnow(),
            current_phase=None,
        )
        logger.error("Job %s failed: %s", job_id, message)
        self.bus.emit(NotificationKind.TEST_FAILED, job_id, error=message)

    def _ensure_registry(self) -> BackendRegistry:
        if self._registry is not None:
            return self._registry
        configs, errors = collect_backend_configs(self.store.get_runner_settings())
        self._registry = BackendRegistry.from_configs(
            configs,
            config_errors=errors,
            kill_grace_seconds=self.settings.kill_grace_seconds,
            ci_poll_interval=self.settings.ci_poll_interval_seconds,
            ci_queue_timeout=self.settings.ci_queue_timeout_seconds,
            health_timeout=self.settings.health_timeout_seconds,
        )
        return self._registry
