"""Job persistence contract and two reference stores."""

from __future__ import annotations

import copy
import fcntl
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from lt_common.errors import JobNotFoundError, PersistenceError
from lt_controller.models.jobs import JOB_FIELDS, Job, JobStatus, validate_transition
from lt_runner.results.reducer import TransactionStats

logger = logging.getLogger(__name__)

RUNNER_SETTINGS = "runner"


@runtime_checkable
class JobStore(Protocol):
    """What the controller needs from the persistence layer."""

    def create_job(self, **fields: Any) -> Job: ...

    def get_job(self, job_id: int) -> Optional[Job]: ...

    def update_job(self, job_id: int, **fields: Any) -> Job: ...

    def list_jobs(self) -> List[Job]: ...

    def find_jobs_by_status(self, status: JobStatus | str) -> List[Job]: ...

    def insert_transaction_stats(
        self, job_id: int, stats: Sequence[TransactionStats]
    ) -> None: ...

    def get_transaction_stats(self, job_id: int) -> List[TransactionStats]: ...

    def get_runner_settings(self, category: str = RUNNER_SETTINGS) -> Dict[str, str]: ...

    def set_setting(self, category: str, key: str, value: str) -> None: ...


def require_job(store: JobStore, job_id: int) -> Job:
    job = store.get_job(job_id)
    if job is None:
        raise JobNotFoundError(f"Job {job_id} not found", context={"job_id": job_id})
    return job


class InMemoryJobStore:
    """Thread-safe store that keeps everything in process memory.

    Returned jobs are copies; mutate them through ``update_job``.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._jobs: Dict[int, Job] = {}
        self._stats: Dict[int, List[TransactionStats]] = {}
        self._settings: Dict[str, Dict[str, str]] = {}
        self._next_id = 1

    def create_job(self, **fields: Any) -> Job:
        fields.pop("id", None)
        self._check_fields(fields)
        with self._locked():
            job = Job(id=self._next_id, **fields)
            self._jobs[job.id] = job
            self._next_id += 1
            self._persist()
            return copy.deepcopy(job)

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._locked():
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def update_job(self, job_id: int, **fields: Any) -> Job:
        fields.pop("id", None)
        self._check_fields(fields)
        with self._locked():
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found", context={"job_id": job_id})
            updated = copy.deepcopy(job)
            if "status" in fields:
                fields["status"] = JobStatus(fields["status"])
                validate_transition(job.status, fields["status"])
            for name, value in fields.items():
                setattr(updated, name, value)
            self._jobs[job_id] = updated
            try:
                self._persist()
            except PersistenceError:
                self._jobs[job_id] = job
                raise
            return copy.deepcopy(updated)

    def list_jobs(self) -> List[Job]:
        with self._locked():
            return [copy.deepcopy(self._jobs[key]) for key in sorted(self._jobs)]

    def find_jobs_by_status(self, status: JobStatus | str) -> List[Job]:
        wanted = JobStatus(status)
        return [job for job in self.list_jobs() if job.status == wanted]

    def insert_transaction_stats(
        self, job_id: int, stats: Sequence[TransactionStats]
    ) -> None:
        with self._locked():
            if job_id not in self._jobs:
                raise JobNotFoundError(f"Job {job_id} not found", context={"job_id": job_id})
            self._stats.setdefault(job_id, []).extend(stats)
            self._persist()

    def get_transaction_stats(self, job_id: int) -> List[TransactionStats]:
        with self._locked():
            return list(self._stats.get(job_id, []))

    def get_runner_settings(self, category: str = RUNNER_SETTINGS) -> Dict[str, str]:
        with self._locked():
            return dict(self._settings.get(category, {}))

    def set_setting(self, category: str, key: str, value: str) -> None:
        with self._locked():
            self._settings.setdefault(category, {})[key] = str(value)
            self._persist()

    @staticmethod
    def _check_fields(fields: Dict[str, Any]) -> None:
        unknown = sorted(set(fields) - JOB_FIELDS)
        if unknown:
            raise PersistenceError(
                f"Unknown job field(s): {', '.join(unknown)}",
                context={"fields": unknown},
            )

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held."""


class JsonJobStore(InMemoryJobStore):
    """Store backed by a single JSON document shared between processes.

    Every operation holds an exclusive ``flock`` on ``<name>.lock`` and
    reloads the document first, so an ``lt enqueue`` or ``lt cancel`` is
    seen by a running ``lt serve``.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self.lock_path = self.path.with_name(f"{self.path.name}.lock")
        self._lock_handle: Any = None
        with self._locked():
            pass

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            if self._lock_handle is not None:
                # Re-entered from this thread; the file lock is already held.
                yield
                return
            handle = self._acquire_file_lock()
            self._lock_handle = handle
            try:
                if self.path.exists():
                    self._load()
                yield
            finally:
                self._lock_handle = None
                handle.close()

    def _acquire_file_lock(self) -> Any:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = self.lock_path.open("a")
        except OSError as exc:
            raise PersistenceError(
                f"Cannot open lock file {self.lock_path}: {exc}",
                context={"path": str(self.lock_path)},
                cause=exc,
            ) from exc
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        except OSError as exc:
            handle.close()
            raise PersistenceError(
                f"Cannot lock job store {self.path}: {exc}",
                context={"path": str(self.path)},
                cause=exc,
            ) from exc
        return handle

    def _load(self) -> None:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(
                f"Cannot load job store {self.path}: {exc}",
                context={"path": str(self.path)},
                cause=exc,
            ) from exc
        self._jobs = {
            int(key): Job.from_dict(value) for key, value in data.get("jobs", {}).items()
        }
        self._stats = {
            int(key): [TransactionStats.from_dict(item) for item in items]
            for key, items in data.get("transaction_stats", {}).items()
        }
        self._settings = {
            str(category): {str(k): str(v) for k, v in values.items()}
            for category, values in data.get("settings", {}).items()
        }
        self._next_id = int(data.get("next_id") or (max(self._jobs, default=0) + 1))
        logger.debug("Loaded %d jobs from %s", len(self._jobs), self.path)

    def _persist(self) -> None:
        serialized = {
            "next_id": self._next_id,
            "jobs": {str(key): job.to_dict() for key, job in self._jobs.items()},
            "transaction_stats": {
                str(key): [item.to_dict() for item in items]
                for key, items in self._stats.items()
            },
            "settings": self._settings,
        }
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(serialized, handle, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(
                f"Cannot write job store {self.path}: {exc}",
                context={"path": str(self.path)},
                cause=exc,
            ) from exc
