from prometheus_client import Counter

heartbeat = Counter("rowqueue_worker_heartbeat_total", "Worker heartbeat ticks")
jobs_enqueued = Counter("rowqueue_jobs_enqueued_total", "Jobs enqueued or re-enqueued")
jobs_claimed = Counter("rowqueue_jobs_claimed_total", "Jobs claimed")
claims_lost = Counter("rowqueue_claims_lost_total", "Claim attempts that lost the race")
jobs_succeeded = Counter("rowqueue_jobs_succeeded_total", "Jobs succeeded")
jobs_retried = Counter("rowqueue_jobs_retried_total", "Jobs rescheduled after a failure")
jobs_discarded = Counter("rowqueue_jobs_discarded_total", "Jobs discarded")
claims_released = Counter("rowqueue_claims_released_total", "Stale claims released by the reconciler")
