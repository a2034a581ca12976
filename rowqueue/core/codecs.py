"""Column codecs.

Each codec turns a Python value into the text stored in its column and back.
Raw strings are accepted unchanged on dump so already-serialized values can be
written directly. Any other shape raises InvalidFieldValue.
"""

import json
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List

from rowqueue.common.errors import InvalidFieldValue
from rowqueue.schemas.job import Job

TYPE_KEY = "_rq_type"


def _encode(value):
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        if TYPE_KEY in value:
            raise InvalidFieldValue("arguments", value)
        out = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise InvalidFieldValue("arguments", value)
            out[k] = _encode(v)
        return out
    # datetime is a subclass of date
    if isinstance(value, datetime):
        return {TYPE_KEY: "datetime", "value": value.isoformat()}
    if isinstance(value, date):
        return {TYPE_KEY: "date", "value": value.isoformat()}
    if isinstance(value, timedelta):
        return {TYPE_KEY: "timedelta", "value": value.total_seconds()}
    if isinstance(value, Decimal):
        return {TYPE_KEY: "decimal", "value": str(value)}
    raise InvalidFieldValue("arguments", value)


def _decode(value):
    if isinstance(value, list):
        return [_decode(v) for v in value]
    if isinstance(value, dict):
        kind = value.get(TYPE_KEY)
        if kind == "datetime":
            return datetime.fromisoformat(value["value"])
        if kind == "date":
            return date.fromisoformat(value["value"])
        if kind == "timedelta":
            return timedelta(seconds=value["value"])
        if kind == "decimal":
            return Decimal(value["value"])
        if kind is not None:
            raise InvalidFieldValue("arguments", value)
        return {k: _decode(v) for k, v in value.items()}
    return value


class ArgumentCodec:
    def dump(self, arguments) -> str:
        if isinstance(arguments, (list, tuple)):
            return json.dumps(_encode(list(arguments)))
        if isinstance(arguments, str):
            return arguments
        raise InvalidFieldValue("arguments", arguments)

    def load(self, raw: str | None) -> List[Any] | None:
        if raw is None:
            return None
        try:
            loaded = json.loads(raw)
        except ValueError as e:
            raise InvalidFieldValue("arguments", raw) from e
        if not isinstance(loaded, list):
            raise InvalidFieldValue("arguments", raw)
        return _decode(loaded)


class MapCodec:
    """Codec for a string-keyed map column such as exception_executions."""

    def __init__(self, field: str):
        self.field = field

    def dump(self, mapping) -> str:
        if isinstance(mapping, dict):
            return json.dumps(mapping)
        if isinstance(mapping, str):
            return mapping
        raise InvalidFieldValue(self.field, mapping)

    def load(self, raw: str | None) -> Dict[str, Any] | None:
        if raw is None:
            return None
        try:
            loaded = json.loads(raw)
        except ValueError as e:
            raise InvalidFieldValue(self.field, raw) from e
        if not isinstance(loaded, dict):
            raise InvalidFieldValue(self.field, raw)
        return loaded


class JobClassCodec:
    """Maps job definitions to their registry key and back."""

    def __init__(self, registry):
        self.registry = registry

    def dump(self, job_class) -> str:
        key = getattr(job_class, "key", None)
        if isinstance(key, str):
            return key
        if isinstance(job_class, str):
            return job_class
        raise InvalidFieldValue("job_class", job_class)

    def load(self, raw: str):
        if not isinstance(raw, str):
            raise InvalidFieldValue("job_class", raw)
        definition = self.registry.get(raw)
        if definition is None:
            raise InvalidFieldValue("job_class", raw)
        return definition


ARGUMENTS = ArgumentCodec()
EXCEPTION_EXECUTIONS = MapCodec("exception_executions")


class JobSerializer:
    """Converts Job objects to record column values and records back to jobs."""

    def __init__(self, registry, arguments: ArgumentCodec = ARGUMENTS,
                 exception_executions: MapCodec = EXCEPTION_EXECUTIONS):
        self.job_class = JobClassCodec(registry)
        self.arguments = arguments
        self.exception_executions = exception_executions

    def serialize(self, job) -> dict:
        return {
            "job_id": job.job_id,
            "job_class": self.job_class.dump(job.job_class),
            "raw_arguments": self.arguments.dump(job.arguments),
            "queue_name": job.queue_name,
            "priority": job.priority,
            "executions": job.executions,
            "raw_exception_executions": self.exception_executions.dump(job.exception_executions),
            "enqueued_at": job.enqueued_at,
            "scheduled_at": job.scheduled_at,
            "locale": job.locale,
            "timezone": job.timezone,
        }

    def deserialize(self, record):
        definition = self.job_class.load(record.job_class)
        return Job(
            job_id=record.job_id,
            job_class=definition.key,
            arguments=self.arguments.load(record.raw_arguments),
            queue_name=record.queue_name,
            priority=record.priority,
            executions=record.executions,
            exception_executions=self.exception_executions.load(record.raw_exception_executions),
            enqueued_at=record.enqueued_at,
            scheduled_at=record.scheduled_at,
            locale=record.locale,
            timezone=record.timezone,
        )
