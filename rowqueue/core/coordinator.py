import re
import threading
import weakref

from rowqueue.common import metrics
from rowqueue.common.clock import Clock, to_utc
from rowqueue.common.errors import (
    DoubleBindingError,
    DuplicateKeyError,
    InvariantViolation,
    RecordNotFound,
)
from rowqueue.common.events import log_event
from rowqueue.common.states import Outcome
from rowqueue.core.codecs import JobSerializer
from rowqueue.core.handle import ExecutionHandle
from rowqueue.core.relation import JobRelation
from rowqueue.db.models import JobRecord
from rowqueue.schemas.job import Job

JOB_ID_REGEX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")

SCOPES = ("all", "due", "ready", "ordered", "by_due_date", "count")


def delete_discarded(coordinator, job):
    coordinator.delete(job)


def retain_discarded(queue_name: str = "discarded"):
    """Discard policy that keeps discarded jobs by moving them to another queue."""

    def discard(coordinator, job):
        job.queue_name = queue_name
        coordinator.enqueue_at(job, job.scheduled_at)

    return discard


class Coordinator:
    """Applies enqueues and execution outcomes to job records.

    Each in-memory job is bound to at most one ExecutionHandle at a time.
    Re-enqueueing a bound job updates its row in place, so retries never
    create duplicate rows.
    """

    def __init__(self, store, registry, clock=None, serializer=None, discard=delete_discarded):
        self.store = store
        self.registry = registry
        self.clock = clock or Clock()
        self.serializer = serializer or JobSerializer(registry)
        self._discard = discard
        # A binding lives only as long as someone holds its handle.
        self._handles: dict[int, weakref.ref] = {}
        self._lock = threading.RLock()

    # Binding

    def bind(self, job: Job, record: JobRecord) -> ExecutionHandle:
        key = id(job)
        with self._lock:
            if self.handle_for(job) is not None:
                raise DoubleBindingError(f"job {job.job_id} already has an execution handle")
            handle = ExecutionHandle(job, record)
            self._handles[key] = weakref.ref(handle, lambda ref: self._forget(key, ref))
        return handle

    def _forget(self, key: int, ref: weakref.ref):
        with self._lock:
            if self._handles.get(key) is ref:
                del self._handles[key]

    def handle_for(self, job: Job) -> ExecutionHandle | None:
        ref = self._handles.get(id(job))
        handle = ref() if ref is not None else None
        if handle is None or handle.job is not job:
            return None
        return handle

    def bound_count(self) -> int:
        return len(self._handles)

    def release(self, handle: ExecutionHandle):
        with self._lock:
            ref = self._handles.get(id(handle.job))
            if ref is not None and ref() is handle:
                del self._handles[id(handle.job)]

    def materialize(self, record: JobRecord) -> ExecutionHandle:
        return self.bind(self.serializer.deserialize(record), record)

    # Enqueueing

    def enqueue(self, job: Job) -> ExecutionHandle:
        return self.enqueue_at(job, None)

    def enqueue_at(self, job: Job, when=None) -> ExecutionHandle:
        job.scheduled_at = to_utc(when)
        job.enqueued_at = self.clock.now()
        fields = self.serializer.serialize(job)

        handle = self.handle_for(job)
        if handle is not None:
            try:
                self.store.update(handle.record, fields)
            except RecordNotFound:
                # Deleted by someone else; recreate and point the handle at the new row.
                handle.rebind(self._create_or_update(fields))
                log_event("job_recreated", job_id=job.job_id)
            handle.destroyed = False
        else:
            record = self.store.find_by_job_id(job.job_id)
            if record is None:
                record = self._create_or_update(fields)
            else:
                try:
                    self.store.update(record, fields)
                except RecordNotFound:
                    record = self._create_or_update(fields)
            handle = self.bind(job, record)

        metrics.jobs_enqueued.inc()
        log_event(
            "job_enqueued",
            job_id=job.job_id,
            job_class=job.job_class,
            queue_name=job.queue_name,
            executions=job.executions,
            scheduled_at=job.scheduled_at,
        )
        return handle

    def _create_or_update(self, fields: dict) -> JobRecord:
        try:
            return self.store.create(fields)
        except DuplicateKeyError:
            record = self.store.find_by_job_id(fields["job_id"])
            if record is None:
                raise
            return self.store.update(record, fields)

    # Outcomes

    def record_success(self, handle: ExecutionHandle):
        self.store.delete(handle.record)
        handle.destroyed = True
        self.release(handle)
        metrics.jobs_succeeded.inc()
        log_event("job_succeeded", job_id=handle.job_id, executions=handle.job.executions)

    def record_retry(self, handle: ExecutionHandle, executions: int, scheduled_at):
        job = handle.job
        job.executions = executions
        self.enqueue_at(job, scheduled_at)
        metrics.jobs_retried.inc()
        log_event("job_retrying", job_id=job.job_id, executions=executions, scheduled_at=job.scheduled_at)

    def record_discard(self, handle: ExecutionHandle):
        """Apply the discard policy. Discard hooks must already have run."""
        self._discard(self, handle.job)
        self.release(handle)
        metrics.jobs_discarded.inc()
        log_event("job_discarded", job_id=handle.job_id, executions=handle.job.executions)

    def verify_outcome(self, handle: ExecutionHandle, executions_before: int, outcome: Outcome):
        """Check the stored row agrees with what the executor reported."""
        row = self.store.find_by_job_id(handle.job_id)
        if outcome == Outcome.COMPLETED:
            if handle.destroyed and row is None:
                return
        elif outcome == Outcome.RETRYING:
            if (
                row is not None
                and row.executions == executions_before + 1
                and row.values() == handle.record.values()
            ):
                return
        raise InvariantViolation(f"job {handle.job_id} not destroyed or updated after {outcome.value}")

    # Discard / delete

    def discard(self, job: Job, run_hooks: bool = True) -> Job:
        handle = self.handle_for(job)
        if run_hooks:
            self.registry.run_discard_hooks(job, None)
        self._discard(self, job)
        if handle is not None:
            self.release(handle)
        log_event("job_discarded", job_id=job.job_id, explicit=True)
        return job

    def delete(self, job: Job) -> Job:
        handle = self.handle_for(job)
        if handle is not None:
            self.store.delete(handle.record)
            handle.destroyed = True
            self.release(handle)
        else:
            self.store.delete_where(JobRecord.job_id == job.job_id)
        return job

    # Queries

    def all(self) -> JobRelation:
        return JobRelation(self)

    def due(self) -> JobRelation:
        return self.all().due()

    def ready(self) -> JobRelation:
        return self.all().ready()

    def ordered(self) -> JobRelation:
        return self.all().ordered()

    def query(self, *args, limit=None, order=None, **filters):
        """Query enqueued jobs.

        query()                        all jobs, by due date
        query("due", limit=10)         at most 10 due jobs
        query(queue_name="q1")         jobs in q1
        query(job_class=SendEmail)     jobs of one definition
        query("ready", "count")        number of ready jobs
        query(job_id) / query(id=...)  one handle or None
        """
        args = list(args)
        if "id" in filters:
            filters["job_id"] = filters.pop("id")
        if len(args) == 1 and isinstance(args[0], str) and JOB_ID_REGEX.match(args[0]):
            filters["job_id"] = args.pop()

        if not args and list(filters) == ["job_id"] and not isinstance(filters["job_id"], (list, tuple)):
            record = self.store.find_by_job_id(filters["job_id"])
            return self.materialize(record) if record is not None else None

        unknown = [a for a in args if a not in SCOPES]
        if unknown:
            raise ValueError(f"unknown query scope {unknown[0]!r}")

        relation = self.all()
        if order is not None:
            relation = relation.order_by(*(order if isinstance(order, (list, tuple)) else [order]))
        if filters:
            relation = relation.where(**filters)
        if limit is not None:
            relation = relation.limit(limit)

        count = False
        for scope in args:
            if scope == "count":
                count = True
            elif scope != "all":
                relation = getattr(relation, scope)()
        if not relation.is_ordered:
            relation = relation.ordered()

        if count:
            return relation.count()
        return list(relation)
