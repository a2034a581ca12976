import os

def env(key: str, default: str | None = None) -> str:
    v = os.getenv(key, default)
    if v is None:
        raise RuntimeError(f"Missing env var: {key}")
    return v

def env_flag(key: str, default: str = "0") -> bool:
    return env(key, default) == "1"

DATABASE_URL = env("DATABASE_URL", "sqlite:///rowqueue.db")
JOBS_TABLE = env("JOBS_TABLE", "jobs")

DEFAULT_QUEUE = env("DEFAULT_QUEUE", "default")
DEFAULT_LOCALE = env("DEFAULT_LOCALE", "en")
DEFAULT_TIMEZONE = env("DEFAULT_TIMEZONE", "UTC")
CLAIM_PREFIX = env("CLAIM_PREFIX", "claimed-")

DEFAULT_RETRY_ATTEMPTS = int(env("DEFAULT_RETRY_ATTEMPTS", "5"))
DEFAULT_RETRY_WAIT_SECONDS = float(env("DEFAULT_RETRY_WAIT_SECONDS", "3"))

# Worker
JOBS_MODULE = os.getenv("JOBS_MODULE")
WORKER_QUEUES = [q for q in env("WORKER_QUEUES", "").split(",") if q]
POLL_SECONDS = float(env("POLL_SECONDS", "1"))
BATCH_SIZE = int(env("BATCH_SIZE", "10"))
MAX_LOOPS = int(env("MAX_LOOPS", "0"))

METRICS_ENABLED = env_flag("METRICS_ENABLED", "1")
METRICS_PORT = int(env("METRICS_PORT", "8000"))
LOG_EVENTS = env_flag("LOG_EVENTS", "1")

# Reconciler
STALE_CLAIM_SECONDS = int(env("STALE_CLAIM_SECONDS", "600"))
RECONCILE_BATCH_SIZE = int(env("RECONCILE_BATCH_SIZE", "100"))
RECONCILE_SLEEP_SECONDS = int(env("RECONCILE_SLEEP_SECONDS", "5"))
