import time
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from rowqueue.common import config, metrics
from rowqueue.common.clock import Clock
from rowqueue.common.events import log_event
from rowqueue.core.store import RecordStore
from rowqueue.db.models import JobRecord
from rowqueue.db.session import make_engine, make_session_factory


def reconcile_once(store, clock=None, prefix=config.CLAIM_PREFIX,
                   stale_seconds=config.STALE_CLAIM_SECONDS, batch_size=config.RECONCILE_BATCH_SIZE):
    """
    Release claims held longer than stale_seconds.

    Repairs the crash window the claim protocol leaves open:
      - worker claimed the job (queue_name prefixed, scheduled_at = claim time)
      - worker died before reporting an outcome
    The job goes back to its original queue and is due immediately. Each
    release is itself a compare-and-swap, so a worker finishing late and the
    reconciler never both win.
    """
    clock = clock or Clock()
    cutoff = clock.now() - timedelta(seconds=stale_seconds)
    stmt = (
        select(JobRecord)
        .where(JobRecord.queue_name.startswith(prefix), JobRecord.scheduled_at < cutoff)
        .order_by(JobRecord.scheduled_at)
        .limit(batch_size)
    )

    released = []
    for record in store.fetch(stmt):
        updated = store.compare_and_set(
            record.job_id,
            expected={"queue_name": record.queue_name, "scheduled_at": record.scheduled_at},
            values={"queue_name": record.queue_name[len(prefix):], "scheduled_at": None},
        )
        if updated == 1:
            released.append(record.job_id)
            metrics.claims_released.inc()
            log_event("claim_reconciled", job_id=record.job_id, queue_name=record.queue_name[len(prefix):])
    return released


if __name__ == "__main__":
    store = RecordStore(make_session_factory(make_engine(config.DATABASE_URL)))
    while True:
        try:
            repaired = reconcile_once(store)
            if repaired:
                log_event("reconciled", count=len(repaired))
        except OperationalError:
            # DB down / transient network failure
            time.sleep(2)

        time.sleep(config.RECONCILE_SLEEP_SECONDS)
