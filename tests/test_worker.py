import gc
from datetime import timedelta

import pytest
from sqlalchemy.exc import ProgrammingError

from rowqueue.common.errors import InvariantViolation
from rowqueue.services.worker import worker
from rowqueue.services.worker.reconciler import reconcile_once


def test_run_once_executes_ready_jobs_only(coordinator, claiming_executor, store, record_job, fail_job, runs, clock):
    coordinator.enqueue(record_job.new("now"))
    clock.advance()
    coordinator.enqueue(fail_job.new())
    coordinator.enqueue_at(record_job.new("later"), clock.now() + timedelta(hours=1))

    outcomes = worker.run_once(coordinator, claiming_executor)

    assert outcomes == ["completed", "retrying"]
    assert runs == ["now"]
    assert store.count() == 2


def test_run_once_logs_and_skips_discarded_jobs(coordinator, claiming_executor, store, registry, discards):
    coordinator.enqueue(registry.resolve("reject").new())

    assert worker.run_once(coordinator, claiming_executor) == ["discarded"]
    assert len(discards) == 1
    assert store.count() == 0


def test_run_once_ignores_claimed_jobs(coordinator, claiming_executor, claimer, store, record_job, runs):
    handle = coordinator.enqueue(record_job.new("x"))
    claimer.claim(handle.job)

    assert worker.run_once(coordinator, claiming_executor) == []
    assert runs == []


def test_run_once_filters_by_queue(coordinator, claiming_executor, record_job, runs):
    coordinator.enqueue(record_job.new("a", queue_name="q1"))
    coordinator.enqueue(record_job.new("b", queue_name="q2"))

    worker.run_once(coordinator, claiming_executor, queues=["q2"])

    assert runs == ["b"]


def test_run_once_propagates_invariant_violations(coordinator, claiming_executor, store, record_job, monkeypatch):
    coordinator.enqueue(record_job.new())
    monkeypatch.setattr(store, "delete", lambda record: False)

    with pytest.raises(InvariantViolation):
        worker.run_once(coordinator, claiming_executor)


def test_run_stops_after_max_loops(coordinator, claiming_executor, record_job, runs, monkeypatch):
    monkeypatch.setattr(worker.time, "sleep", lambda seconds: None)
    coordinator.enqueue(record_job.new("a"))

    worker.run(coordinator, claiming_executor, max_loops=3)

    assert runs == ["a"]


def test_load_registry_requires_a_module():
    with pytest.raises(RuntimeError):
        worker.load_registry(None)


def test_reconciler_releases_only_stale_claims(coordinator, claimer, store, record_job, clock):
    stale = coordinator.enqueue(record_job.new(queue_name="q1")).job
    fresh = coordinator.enqueue(record_job.new()).job
    claimer.claim(stale)
    clock.advance(120)
    claimer.claim(fresh)
    clock.advance(30)

    released = reconcile_once(store, clock=clock, stale_seconds=60)

    assert released == [stale.job_id]
    record = store.find_by_job_id(stale.job_id)
    assert record.queue_name == "q1"
    assert record.scheduled_at is None
    assert store.find_by_job_id(fresh.job_id).queue_name == "claimed-default"


def test_run_once_propagates_store_errors_from_outcomes(coordinator, claiming_executor, store, record_job, monkeypatch):
    coordinator.enqueue(record_job.new())

    def broken_delete(record):
        raise ProgrammingError("DELETE FROM jobs", {}, Exception("relation does not exist"))

    monkeypatch.setattr(store, "delete", broken_delete)

    with pytest.raises(ProgrammingError):
        worker.run_once(coordinator, claiming_executor)


def test_run_once_leaves_no_handles_bound(coordinator, claiming_executor, store, registry):
    @registry.job("flaky", attempts=100, wait=0)
    def flaky():
        raise RuntimeError("again")

    job_id = coordinator.enqueue(flaky.new()).job_id

    for _ in range(5):
        assert worker.run_once(coordinator, claiming_executor) == ["retrying"]
        coordinator.query(job_id)
    gc.collect()

    assert coordinator.bound_count() == 0
    assert store.find_by_job_id(job_id).executions == 5


def test_run_once_with_zero_batch_size_does_nothing(coordinator, claiming_executor, record_job, runs):
    coordinator.enqueue(record_job.new("a"))

    assert worker.run_once(coordinator, claiming_executor, batch_size=0) == []
    assert runs == []
