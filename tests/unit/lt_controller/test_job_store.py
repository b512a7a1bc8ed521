import json

import pytest

from lt_common.errors import InvalidTransitionError, JobNotFoundError, PersistenceError
from lt_controller.models.jobs import JobStatus
from lt_controller.store import InMemoryJobStore, JsonJobStore, require_job
from lt_runner.results.reducer import TransactionStats


pytestmark = pytest.mark.unit_controller


def _stats(label):
    return TransactionStats(
        label=label,
        sample_count=2,
        error_count=0,
        error_percent=0.0,
        min=1,
        max=2,
        mean=2,
        median=1,
        std_dev=0.5,
        p90=2,
        p95=2,
        p99=2,
        throughput=1.5,
    )


def test_ids_are_sequential_and_copies_are_returned():
    store = InMemoryJobStore()
    first = store.create_job(name="a", id=99)
    second = store.create_job(name="b")
    assert (first.id, second.id) == (1, 2)

    first.name = "mutated"
    assert store.get_job(1).name == "a"
    assert store.get_job(42) is None


def test_update_validates_transitions():
    store = InMemoryJobStore()
    job = store.create_job(name="a")
    store.update_job(job.id, status=JobStatus.QUEUED)
    with pytest.raises(InvalidTransitionError):
        store.update_job(job.id, status="pending")
    assert store.get_job(job.id).status is JobStatus.QUEUED


def test_unknown_fields_and_missing_jobs():
    store = InMemoryJobStore()
    with pytest.raises(PersistenceError, match="bogus"):
        store.create_job(bogus=1)
    with pytest.raises(JobNotFoundError):
        store.update_job(5, name="x")
    with pytest.raises(JobNotFoundError):
        require_job(store, 5)


def test_find_by_status():
    store = InMemoryJobStore()
    store.create_job(name="a")
    queued = store.create_job(name="b")
    store.update_job(queued.id, status="queued")
    assert [job.id for job in store.find_jobs_by_status("queued")] == [queued.id]


def test_json_store_round_trip(tmp_path):
    path = tmp_path / "state" / "jobs.json"
    store = JsonJobStore(path)
    job = store.create_job(name="smoke", script_path="/plans/smoke.jmx", concurrency=4)
    store.update_job(job.id, status="queued")
    store.insert_transaction_stats(job.id, [_stats("home"), _stats("login")])
    store.set_setting("runner", "ssh_host", "lg-1")

    reloaded = JsonJobStore(path)
    restored = reloaded.get_job(job.id)
    assert restored.status is JobStatus.QUEUED
    assert restored.concurrency == 4
    assert restored.queued_at is None
    assert [s.label for s in reloaded.get_transaction_stats(job.id)] == ["home", "login"]
    assert reloaded.get_runner_settings() == {"ssh_host": "lg-1"}
    assert reloaded.create_job(name="next").id == 2
    assert not path.with_name("jobs.json.tmp").exists()


def test_json_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / "jobs.json"
    path.write_text("{not json")
    with pytest.raises(PersistenceError, match="Cannot load"):
        JsonJobStore(path)


def test_failed_write_keeps_previous_state(tmp_path, monkeypatch):
    store = JsonJobStore(tmp_path / "jobs.json")
    job = store.create_job(name="a")

    def _boom(*_args, **_kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("lt_controller.store.os.replace", _boom)
    with pytest.raises(PersistenceError, match="disk full"):
        store.update_job(job.id, name="b")
    monkeypatch.undo()

    assert store.get_job(job.id).name == "a"
    on_disk = json.loads((tmp_path / "jobs.json").read_text())
    assert on_disk["jobs"]["1"]["name"] == "a"


def test_json_stores_share_one_file(tmp_path):
    path = tmp_path / "jobs.json"
    serve = JsonJobStore(path)
    cli = JsonJobStore(path)
    first = serve.create_job(name="a")
    serve.update_job(first.id, status="queued")

    second = cli.create_job(name="b")
    cli.update_job(second.id, status="queued")
    assert second.id == first.id + 1

    serve.update_job(first.id, status="running")

    on_disk = json.loads(path.read_text())
    assert on_disk["jobs"][str(second.id)]["status"] == "queued"
    assert on_disk["jobs"][str(first.id)]["status"] == "running"
    assert serve.get_job(second.id).status is JobStatus.QUEUED
    assert [job.id for job in serve.find_jobs_by_status("queued")] == [second.id]


def test_json_store_sees_settings_written_elsewhere(tmp_path):
    path = tmp_path / "jobs.json"
    reader = JsonJobStore(path)
    JsonJobStore(path).set_setting("runner", "ssh_host", "lg-1")
    assert reader.get_runner_settings() == {"ssh_host": "lg-1"}
    assert (tmp_path / "jobs.json.lock").exists()
