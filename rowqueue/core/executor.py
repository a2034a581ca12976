from dataclasses import dataclass
from typing import Any

from rowqueue.common.errors import ClaimLost
from rowqueue.common.events import log_event
from rowqueue.common.states import Outcome
from rowqueue.core.handle import ExecutionHandle


@dataclass
class ExecutionResult:
    job_id: str
    outcome: Outcome
    value: Any = None
    error: BaseException | None = None


def exception_kind(error: BaseException) -> str:
    return type(error).__name__


class JobExecutor:
    """Runs materialized jobs and reports each outcome to the coordinator.

    A failing job is retried while its per-error attempt count is below the
    definition's budget. After that, or for an error listed in discard_on, the
    discard hooks run, the record is discarded and the error is re-raised.
    With a claimer, the job is reserved before it runs and the reservation is
    undone before any failure handling, so hooks see the original queue.
    """

    def __init__(self, coordinator, claimer=None):
        self.coordinator = coordinator
        self.registry = coordinator.registry
        self.clock = coordinator.clock
        self.claimer = claimer

    def execute(self, handle: ExecutionHandle) -> ExecutionResult:
        executions_before = handle.job.executions
        result = self.perform(handle)
        self.coordinator.verify_outcome(handle, executions_before, result.outcome)
        return result

    def perform(self, handle: ExecutionHandle) -> ExecutionResult:
        job = handle.job
        definition = self.registry.resolve(job.job_class)

        claim = None
        if self.claimer is not None:
            claim = self.claimer.claim(job)
            if claim is None:
                raise ClaimLost(job.job_id)

        job.executions += 1
        log_event("execution_started", job_id=job.job_id, job_class=job.job_class, executions=job.executions)
        try:
            value = definition.perform(*job.arguments)
        except Exception as e:
            if claim is not None:
                self.claimer.release(claim)
            return self._failed(handle, definition, e)

        self.coordinator.record_success(handle)
        return ExecutionResult(job.job_id, Outcome.COMPLETED, value=value)

    def _failed(self, handle, definition, error):
        job = handle.job
        kind = exception_kind(error)
        attempts = job.exception_executions.get(kind, 0) + 1
        job.exception_executions[kind] = attempts
        log_event("execution_failed", job_id=job.job_id, error=kind, message=str(error), attempts=attempts)

        if definition.should_retry(error) and attempts < definition.attempts:
            self.coordinator.record_retry(handle, job.executions, self.clock.now() + definition.wait)
            return ExecutionResult(job.job_id, Outcome.RETRYING, error=error)

        try:
            self.registry.run_discard_hooks(job, error)
        finally:
            self.coordinator.record_discard(handle)
        raise error
