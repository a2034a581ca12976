from datetime import datetime, timezone


class Clock:
    """Naive UTC wall clock. Every timestamp column is stored this way."""

    def now(self):
        return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc(value):
    """Normalize a datetime or epoch seconds to a naive UTC datetime."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc).replace(tzinfo=None)
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
