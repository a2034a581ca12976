import threading

import pytest

from rowqueue.common.errors import ClaimLost
from rowqueue.core.claim import Claimer
from rowqueue.core.coordinator import Coordinator
from rowqueue.core.store import RecordStore
from rowqueue.db.models import JobRecord
from rowqueue.db.session import create_schema, make_engine, make_session_factory
from rowqueue.schemas.job import Job


def test_only_one_of_two_claims_on_the_same_observation_wins(coordinator, store, record_job, clock):
    job = coordinator.enqueue(record_job.new()).job
    first, second = Claimer(store, clock=clock), Claimer(store, clock=clock)

    won = first.claim(job)
    lost = second.claim(job)

    assert won is not None
    assert lost is None
    record = store.find_by_job_id(job.job_id)
    assert record.queue_name == "claimed-default"
    assert record.scheduled_at == clock.now()


def test_already_claimed_queue_is_refused(claimer, store, coordinator, record_job):
    job = coordinator.enqueue(record_job.new(queue_name="claimed-default")).job

    assert claimer.claim(job) is None
    assert store.find_by_job_id(job.job_id).queue_name == "claimed-default"


def test_release_restores_queue_and_schedule(claimer, store, coordinator, record_job, clock):
    scheduled = clock.now()
    job = coordinator.enqueue_at(record_job.new(queue_name="q1"), scheduled).job
    clock.advance(5)

    claim = claimer.claim(job)
    assert claimer.release(claim) is True

    record = store.find_by_job_id(job.job_id)
    assert record.queue_name == "q1"
    assert record.scheduled_at == scheduled
    assert claimer.release(claim) is False


def test_job_runs_while_claimed(coordinator, claiming_executor, store, registry):
    seen = []

    @registry.job("peek")
    def peek(job_id):
        seen.append(store.find_by_job_id(job_id).queue_name)

    job = peek.new()
    job.arguments = [job.job_id]
    handle = coordinator.enqueue(job)

    claiming_executor.execute(handle)

    assert seen == ["claimed-default"]
    assert store.count() == 0


def test_claim_released_after_retryable_failure(coordinator, claiming_executor, store, fail_job):
    handle = coordinator.enqueue(fail_job.new())

    claiming_executor.execute(handle)

    record = store.find_by_job_id(handle.job_id)
    assert record.queue_name == "default"
    assert record.executions == 1


def test_claim_released_before_discard_hooks(coordinator, claiming_executor, store, fail_job):
    queues = []
    fail_job.after_discard(lambda job, error: queues.append(store.find_by_job_id(job.job_id).queue_name))
    handle = coordinator.enqueue(fail_job.new("hi"))
    claiming_executor.execute(handle)

    with pytest.raises(RuntimeError, match="hi"):
        claiming_executor.execute(handle)

    assert queues == ["default"]
    assert store.count() == 0


def test_losing_executor_does_not_run_the_job(coordinator, claiming_executor, claimer, store, record_job, runs):
    handle = coordinator.enqueue(record_job.new("x"))
    stale = coordinator.ready().first()
    assert claimer.claim(handle.job) is not None

    with pytest.raises(ClaimLost):
        claiming_executor.execute(stale)

    assert runs == []
    assert stale.job.executions == 0
    assert store.find_by_job_id(handle.job_id).queue_name == "claimed-default"


def test_concurrent_claims_on_postgres(pg_url, registry):
    engine = make_engine(pg_url)
    create_schema(engine)
    store = RecordStore(make_session_factory(engine))
    coordinator = Coordinator(store, registry)
    job = coordinator.enqueue(registry.resolve("record").new()).job

    barrier = threading.Barrier(8)
    results = []

    def attempt():
        claimer = Claimer(store)
        barrier.wait()
        results.append(claimer.claim(Job(**job.model_dump())))

    try:
        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len([r for r in results if r is not None]) == 1
    finally:
        store.delete_where(JobRecord.job_id == job.job_id)
        engine.dispose()
