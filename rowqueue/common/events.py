import json
from datetime import datetime, timezone

from rowqueue.common.config import LOG_EVENTS


def log_event(event, **fields):
    if not LOG_EVENTS:
        return
    payload = {
        "event": event,
        "ts": datetime.now(timezone.utc).replace(tzinfo=None).isoformat(),
        **fields,
    }
    print(json.dumps(payload, default=str), flush=True)
