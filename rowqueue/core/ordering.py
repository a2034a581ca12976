"""Due filter and execution ordering.

Both orderings are plain ORDER BY lists so a worker can page through them with
LIMIT/OFFSET without any client-side re-sort. CASE expressions put nulls last
on every database.
"""

from sqlalchemy import case, or_

from rowqueue.db.models import JobRecord


def due_clause(now):
    return or_(JobRecord.scheduled_at.is_(None), JobRecord.scheduled_at <= now)


def default_order():
    return [JobRecord.enqueued_at, JobRecord.job_id]


def ready_order():
    """priority asc (nulls last), scheduled_at asc (nulls last), enqueued_at asc."""
    return [
        case((JobRecord.priority.is_(None), 1), else_=0),
        JobRecord.priority,
        case((JobRecord.scheduled_at.is_(None), 1), else_=0),
        JobRecord.scheduled_at,
        JobRecord.enqueued_at,
        JobRecord.job_id,
    ]


def by_due_date_order(now):
    """Due records before future ones, then the ready ordering."""
    return [case((due_clause(now), 0), else_=1), *ready_order()]
