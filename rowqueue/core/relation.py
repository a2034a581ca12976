from sqlalchemy import func, select

from rowqueue.core.codecs import ARGUMENTS, EXCEPTION_EXECUTIONS, JobClassCodec
from rowqueue.core.ordering import by_due_date_order, default_order, due_clause, ready_order
from rowqueue.db.models import JobRecord

ORDER_READY = "ready"
ORDER_BY_DUE_DATE = "by_due_date"


def column_clause(name, value):
    """Equality filter on a column; lists and tuples become IN."""
    if name == "id":
        name = "job_id"
    if name == "arguments":
        return JobRecord.raw_arguments == ARGUMENTS.dump(value)
    if name == "exception_executions":
        return JobRecord.raw_exception_executions == EXCEPTION_EXECUTIONS.dump(value)
    if name not in JobRecord.COLUMNS:
        raise ValueError(f"unknown column {name}")

    column = getattr(JobRecord, name)
    if name == "job_class":
        dump = JobClassCodec(None).dump
        value = [dump(v) for v in value] if isinstance(value, (list, tuple)) else dump(value)
    if isinstance(value, (list, tuple)):
        return column.in_(list(value))
    if value is None:
        return column.is_(None)
    return column == value


def order_column(name):
    if isinstance(name, str):
        descending = name.startswith("-")
        column = getattr(JobRecord, column_name(name.lstrip("-")))
        return column.desc() if descending else column
    return name


def column_name(name):
    if name in ("arguments", "exception_executions"):
        return f"raw_{name}"
    if name not in JobRecord.COLUMNS:
        raise ValueError(f"unknown column {name}")
    return name


class JobRelation:
    """A lazy, restartable query over job records.

    Relations are immutable; every refinement returns a new relation. Nothing
    touches the database until the relation is iterated, counted or
    discarded, and "now" is read from the clock at that moment, so
    re-iterating re-evaluates which records are due.
    """

    def __init__(self, coordinator, clauses=(), due=False, order=None, limit=None, offset=None):
        self.coordinator = coordinator
        self._clauses = tuple(clauses)
        self._due = due
        self._order = order
        self._limit = limit
        self._offset = offset

    def _copy(self, **changes):
        state = dict(
            clauses=self._clauses, due=self._due, order=self._order,
            limit=self._limit, offset=self._offset,
        )
        state.update(changes)
        return JobRelation(self.coordinator, **state)

    def queue(self, queue, *queues):
        return self.where(JobRecord.queue_name.in_([queue, *queues]))

    def where(self, *clauses, **columns):
        extra = list(clauses)
        extra.extend(column_clause(k, v) for k, v in columns.items())
        return self._copy(clauses=self._clauses + tuple(extra))

    def due(self):
        return self._copy(due=True, order=self._order or ORDER_READY)

    def ready(self):
        return self._copy(due=True, order=ORDER_READY)

    def ordered(self):
        return self._copy(order=ORDER_BY_DUE_DATE)

    by_due_date = ordered

    def order_by(self, *columns):
        return self._copy(order=tuple(order_column(c) for c in columns))

    def limit(self, n):
        return self._copy(limit=n)

    def offset(self, n):
        return self._copy(offset=n)

    @property
    def is_ordered(self):
        return self._order is not None

    def order_clauses(self, now):
        if self._order == ORDER_READY:
            return ready_order()
        if self._order == ORDER_BY_DUE_DATE:
            return by_due_date_order(now)
        if self._order:
            return list(self._order)
        return default_order()

    def statement(self, now=None, reverse=False):
        now = now or self.coordinator.clock.now()
        stmt = select(JobRecord).where(*self._clauses)
        if self._due:
            stmt = stmt.where(due_clause(now))
        order = self.order_clauses(now)
        if reverse:
            order = [c.desc() for c in order]
        stmt = stmt.order_by(*order)
        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        if self._offset is not None:
            stmt = stmt.offset(self._offset)
        return stmt

    def records(self) -> list[JobRecord]:
        return self.coordinator.store.fetch(self.statement())

    def __iter__(self):
        for record in self.records():
            yield self.coordinator.materialize(record)

    def first(self, n=None):
        if n == 0:
            return []
        records = self.limit(n or 1).records()
        if n is None:
            return self.coordinator.materialize(records[0]) if records else None
        return [self.coordinator.materialize(r) for r in records]

    def last(self, n=None):
        explicit_order = self._order not in (None, ORDER_READY, ORDER_BY_DUE_DATE)
        if explicit_order or self._limit is not None or self._offset is not None:
            records = self.records()[-(n or 1):]
        else:
            records = self.coordinator.store.fetch(self.statement(reverse=True).limit(n or 1))
            records.reverse()
        if n is None:
            return self.coordinator.materialize(records[-1]) if records else None
        return [self.coordinator.materialize(r) for r in records]

    def count(self, predicate=None) -> int:
        if predicate is None:
            stmt = self.statement().order_by(None).subquery()
            return self.coordinator.store.scalar(select(func.count()).select_from(stmt))
        deserialize = self.coordinator.serializer.deserialize
        return sum(1 for r in self.records() if predicate(deserialize(r)))

    def discard_all(self) -> int:
        """Delete every matching record without running hooks."""
        if self._limit is None and self._offset is None:
            clauses = list(self._clauses)
            if self._due:
                clauses.append(due_clause(self.coordinator.clock.now()))
            return self.coordinator.store.delete_where(*clauses)
        job_ids = [r.job_id for r in self.records()]
        if not job_ids:
            return 0
        return self.coordinator.store.delete_where(JobRecord.job_id.in_(job_ids))

    def perform_all(self, executor, batch_size=None) -> list:
        if not batch_size:
            return [executor.execute(handle) for handle in list(self)]

        # Each job runs at most once; retried jobs stay out of later batches.
        results = []
        seen = []
        while True:
            batch = self.where(JobRecord.job_id.not_in(seen)) if seen else self
            handles = list(batch.limit(batch_size))
            if not handles:
                return results
            for handle in handles:
                seen.append(handle.job_id)
                results.append(executor.execute(handle))

    def __repr__(self):
        return f"<JobRelation due={self._due} order={self._order!r} limit={self._limit}>"
