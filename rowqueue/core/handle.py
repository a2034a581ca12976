from dataclasses import dataclass

from rowqueue.db.models import JobRecord
from rowqueue.schemas.job import Job


@dataclass(eq=False)
class ExecutionHandle:
    """Binds one in-memory job to the row it came from or persists to.

    Outcomes are applied through the handle so they reach the right row even
    after the job has been re-enqueued.
    """

    job: Job
    record: JobRecord
    destroyed: bool = False

    @property
    def job_id(self) -> str:
        return self.job.job_id

    def rebind(self, record: JobRecord):
        self.record = record
        self.destroyed = False

    def __repr__(self):
        state = "destroyed" if self.destroyed else "live"
        return f"<ExecutionHandle {self.job_id} {self.job.job_class} {state}>"
