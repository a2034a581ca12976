class RowQueueError(RuntimeError):
    """Base class for every error raised by rowqueue."""


class DuplicateKeyError(RowQueueError):
    """A record with the same job_id already exists."""

    def __init__(self, job_id):
        super().__init__(f"duplicate job_id {job_id}")
        self.job_id = job_id


class RecordNotFound(RowQueueError):
    """The targeted record no longer exists."""

    def __init__(self, job_id):
        super().__init__(f"job {job_id} not found")
        self.job_id = job_id


class InvalidFieldValue(RowQueueError):
    """A codec was handed a value it cannot dump or load."""

    def __init__(self, field, value):
        super().__init__(f"invalid {field}: {value!r}")
        self.field = field
        self.value = value


class DoubleBindingError(RowQueueError):
    pass


class InvariantViolation(RowQueueError):
    pass


class ClaimLost(RowQueueError):
    """Another worker claimed the job first. Skip it."""

    def __init__(self, job_id):
        super().__init__(f"job {job_id} already claimed")
        self.job_id = job_id
