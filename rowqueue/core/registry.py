from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, List, Tuple, Type

from rowqueue.common.config import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_WAIT_SECONDS
from rowqueue.common.errors import InvalidFieldValue
from rowqueue.schemas.job import Job

DiscardHook = Callable[[Job, BaseException | None], Any]


def run_hooks(hooks, job, error):
    # Every hook runs; the last hook error wins.
    errors = []
    for hook in hooks:
        try:
            hook(job, error)
        except Exception as e:
            errors.append(e)
    if errors:
        raise errors[-1]


@dataclass
class JobDefinition:
    """An executable unit of work, stored in the job_class column by key."""

    key: str
    perform: Callable[..., Any]
    attempts: int = DEFAULT_RETRY_ATTEMPTS
    wait: timedelta = timedelta(seconds=DEFAULT_RETRY_WAIT_SECONDS)
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    discard_on: Tuple[Type[BaseException], ...] = ()
    discard_hooks: List[DiscardHook] = field(default_factory=list)

    def new(self, *arguments, **fields) -> Job:
        return Job(job_class=self.key, arguments=list(arguments), **fields)

    def after_discard(self, hook: DiscardHook) -> DiscardHook:
        self.discard_hooks.append(hook)
        return hook

    def should_retry(self, error: BaseException) -> bool:
        if self.discard_on and isinstance(error, self.discard_on):
            return False
        return isinstance(error, self.retry_on)

    def __call__(self, *arguments):
        return self.perform(*arguments)


class JobRegistry:
    """Maps stable string keys to job definitions."""

    def __init__(self):
        self._definitions: dict[str, JobDefinition] = {}
        self._discard_hooks: List[DiscardHook] = []

    def register(self, definition: JobDefinition) -> JobDefinition:
        if definition.key in self._definitions:
            raise ValueError(f"job {definition.key} already registered")
        self._definitions[definition.key] = definition
        return definition

    def job(self, key: str | None = None, *, attempts: int = DEFAULT_RETRY_ATTEMPTS,
            wait: timedelta | float = timedelta(seconds=DEFAULT_RETRY_WAIT_SECONDS),
            retry_on=(Exception,), discard_on=()):
        """Decorator registering a function as a job.

        The decorated name is replaced by its JobDefinition, which stays
        callable so the body can still be invoked directly.
        """
        if not isinstance(wait, timedelta):
            wait = timedelta(seconds=wait)

        def decorator(fn):
            return self.register(JobDefinition(
                key=key or fn.__name__,
                perform=fn,
                attempts=attempts,
                wait=wait,
                retry_on=tuple(retry_on),
                discard_on=tuple(discard_on),
            ))

        return decorator

    def get(self, key: str) -> JobDefinition | None:
        return self._definitions.get(key)

    def resolve(self, key: str) -> JobDefinition:
        definition = self.get(key)
        if definition is None:
            raise InvalidFieldValue("job_class", key)
        return definition

    def after_discard(self, hook: DiscardHook) -> DiscardHook:
        self._discard_hooks.append(hook)
        return hook

    def run_discard_hooks(self, job: Job, error: BaseException | None = None):
        definition = self.get(job.job_class)
        hooks = list(self._discard_hooks)
        if definition is not None:
            hooks.extend(definition.discard_hooks)
        run_hooks(hooks, job, error)
