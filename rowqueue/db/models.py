from datetime import datetime
from sqlalchemy import Index, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from rowqueue.common.config import JOBS_TABLE, DEFAULT_QUEUE, DEFAULT_LOCALE, DEFAULT_TIMEZONE
from rowqueue.core.codecs import ARGUMENTS, EXCEPTION_EXECUTIONS
from rowqueue.db.session import Base


class JobRecord(Base):
    __tablename__ = JOBS_TABLE
    __table_args__ = (
        Index(f"index_{JOBS_TABLE}_on_enqueued_at", "enqueued_at"),
        Index(f"index_{JOBS_TABLE}_on_scheduled_at", "scheduled_at"),
        Index(f"index_{JOBS_TABLE}_on_priority_scheduled_at_enqueued_at", "priority", "scheduled_at", "enqueued_at"),
    )

    job_id: Mapped[str] = mapped_column(Text, primary_key=True)
    job_class: Mapped[str] = mapped_column(Text, nullable=False)
    raw_arguments: Mapped[str] = mapped_column("arguments", Text, nullable=False)
    queue_name: Mapped[str] = mapped_column(Text, nullable=False, default=DEFAULT_QUEUE)
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    raw_exception_executions: Mapped[str] = mapped_column("exception_executions", Text, nullable=False, default="{}")
    enqueued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    locale: Mapped[str] = mapped_column(Text, nullable=False, default=DEFAULT_LOCALE)
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default=DEFAULT_TIMEZONE)

    COLUMNS = (
        "job_id", "job_class", "raw_arguments", "queue_name", "priority", "executions",
        "raw_exception_executions", "enqueued_at", "scheduled_at", "locale", "timezone",
    )

    @property
    def arguments(self):
        return ARGUMENTS.load(self.raw_arguments)

    @arguments.setter
    def arguments(self, value):
        self.raw_arguments = ARGUMENTS.dump(value)

    @property
    def exception_executions(self):
        return EXCEPTION_EXECUTIONS.load(self.raw_exception_executions)

    @exception_executions.setter
    def exception_executions(self, value):
        self.raw_exception_executions = EXCEPTION_EXECUTIONS.dump(value)

    def values(self) -> dict:
        return {name: getattr(self, name) for name in self.COLUMNS}

    def __repr__(self):
        return f"<JobRecord {self.job_id} {self.job_class} queue={self.queue_name} executions={self.executions}>"
