from dataclasses import dataclass
from datetime import datetime

from rowqueue.common import metrics
from rowqueue.common.clock import Clock
from rowqueue.common.config import CLAIM_PREFIX
from rowqueue.common.events import log_event


@dataclass(frozen=True)
class Claim:
    job_id: str
    queue_name: str
    scheduled_at: datetime | None
    claimed_queue: str
    claimed_at: datetime


class Claimer:
    """Compare-and-swap reservation of a record over its queue_name.

    Of any number of concurrent claim attempts on the same observed
    queue_name, exactly one updates a row. Everyone else sees zero affected
    rows and must skip the job.
    """

    def __init__(self, store, clock=None, prefix: str = CLAIM_PREFIX):
        self.store = store
        self.clock = clock or Clock()
        self.prefix = prefix

    def is_claimed(self, queue_name: str) -> bool:
        return queue_name.startswith(self.prefix)

    def claim(self, job) -> Claim | None:
        if self.is_claimed(job.queue_name):
            log_event("claim_refused", job_id=job.job_id, queue_name=job.queue_name)
            return None

        claimed_queue = f"{self.prefix}{job.queue_name}"
        now = self.clock.now()
        updated = self.store.compare_and_set(
            job.job_id,
            expected={"queue_name": job.queue_name},
            values={"queue_name": claimed_queue, "scheduled_at": now},
        )
        if updated != 1:
            metrics.claims_lost.inc()
            log_event("claim_lost", job_id=job.job_id, queue_name=job.queue_name, updated=updated)
            return None

        metrics.jobs_claimed.inc()
        log_event("claim_acquired", job_id=job.job_id, queue_name=job.queue_name)
        return Claim(job.job_id, job.queue_name, job.scheduled_at, claimed_queue, now)

    def release(self, claim: Claim) -> bool:
        updated = self.store.compare_and_set(
            claim.job_id,
            expected={"queue_name": claim.claimed_queue},
            values={"queue_name": claim.queue_name, "scheduled_at": claim.scheduled_at},
        )
        log_event("claim_released", job_id=claim.job_id, queue_name=claim.queue_name, updated=updated)
        return updated == 1
