from contextlib import contextmanager
from typing import Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql import ClauseElement

from rowqueue.common.errors import DuplicateKeyError, RecordNotFound
from rowqueue.db.models import JobRecord


class RecordStore:
    """CRUD over job records keyed by job_id.

    Each call runs in its own short transaction. Returned records are detached
    from any session so they can be held by execution handles. No locking is
    done here beyond what the database gives a single-row conditional update.
    """

    def __init__(self, session_factory):
        self._sessions = session_factory

    @contextmanager
    def session(self):
        db = self._sessions()
        try:
            with db.begin():
                yield db
        finally:
            db.close()

    def find_by_job_id(self, job_id: str) -> JobRecord | None:
        with self.session() as db:
            return db.get(JobRecord, job_id)

    def exists(self, job_id: str) -> bool:
        with self.session() as db:
            stmt = select(JobRecord.job_id).where(JobRecord.job_id == job_id)
            return db.execute(stmt).first() is not None

    def create(self, fields: dict) -> JobRecord:
        record = JobRecord(**fields)
        try:
            with self.session() as db:
                db.add(record)
        except IntegrityError as e:
            if self.exists(fields["job_id"]):
                raise DuplicateKeyError(fields["job_id"]) from e
            raise
        return record

    def update(self, record: JobRecord, fields: dict) -> JobRecord:
        # Blind overwrite: last writer wins.
        values = {getattr(JobRecord, k): v for k, v in fields.items() if k != "job_id"}
        with self.session() as db:
            stmt = (
                update(JobRecord)
                .where(JobRecord.job_id == record.job_id)
                .values(values)
                .execution_options(synchronize_session=False)
            )
            if db.execute(stmt).rowcount != 1:
                raise RecordNotFound(record.job_id)
        for k, v in fields.items():
            setattr(record, k, v)
        return record

    def delete(self, record: JobRecord) -> bool:
        return self.delete_where(JobRecord.job_id == record.job_id) > 0

    def delete_where(self, *clauses) -> int:
        with self.session() as db:
            stmt = delete(JobRecord).where(*clauses).execution_options(synchronize_session=False)
            return db.execute(stmt).rowcount

    def delete_all(self) -> int:
        with self.session() as db:
            stmt = delete(JobRecord).execution_options(synchronize_session=False)
            return db.execute(stmt).rowcount

    def compare_and_set(self, job_id: str, expected: dict, values: dict) -> int:
        """Conditionally update one row; returns the affected row count."""
        conditions = [JobRecord.job_id == job_id]
        conditions.extend(getattr(JobRecord, k) == v for k, v in expected.items())
        with self.session() as db:
            stmt = (
                update(JobRecord)
                .where(*conditions)
                .values({getattr(JobRecord, k): v for k, v in values.items()})
                .execution_options(synchronize_session=False)
            )
            return db.execute(stmt).rowcount

    def count(self) -> int:
        return self.scalar(select(func.count()).select_from(JobRecord))

    def filtered_count(self, predicate: ClauseElement | Callable[[JobRecord], bool]) -> int:
        if isinstance(predicate, ClauseElement):
            return self.scalar(select(func.count()).select_from(JobRecord).where(predicate))
        return sum(1 for r in self.fetch(select(JobRecord)) if predicate(r))

    def fetch(self, stmt) -> list[JobRecord]:
        with self.session() as db:
            return list(db.scalars(stmt))

    def scalar(self, stmt):
        with self.session() as db:
            return db.scalar(stmt)
