import uuid
from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from rowqueue.common.config import DEFAULT_QUEUE, DEFAULT_LOCALE, DEFAULT_TIMEZONE


class Job(BaseModel):
    job_class: str = Field(..., min_length=1)
    arguments: List[Any] = Field(default_factory=list)
    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()), min_length=1)
    queue_name: str = Field(DEFAULT_QUEUE, min_length=1)
    priority: int | None = None
    executions: int = Field(0, ge=0)
    exception_executions: Dict[str, int] = Field(default_factory=dict)
    enqueued_at: datetime | None = None
    scheduled_at: datetime | None = None
    locale: str = DEFAULT_LOCALE
    timezone: str = DEFAULT_TIMEZONE
