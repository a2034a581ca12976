import importlib
import time
import uuid

from prometheus_client import start_http_server
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from rowqueue.common import config, metrics
from rowqueue.common.errors import ClaimLost, RowQueueError
from rowqueue.common.events import log_event
from rowqueue.core.claim import Claimer
from rowqueue.core.coordinator import Coordinator
from rowqueue.core.executor import JobExecutor
from rowqueue.core.store import RecordStore
from rowqueue.db.models import JobRecord
from rowqueue.db.session import make_engine, make_session_factory


WORKER_ID = str(uuid.uuid4())


# ============================================================
# Setup
# ============================================================

def load_registry(module_name):
    if not module_name:
        raise RuntimeError("Missing env var: JOBS_MODULE")
    module = importlib.import_module(module_name)
    registry = getattr(module, "registry", None)
    if registry is None:
        raise RuntimeError(f"{module_name} does not define a job registry")
    return registry


def build(registry, database_url=config.DATABASE_URL, clock=None):
    store = RecordStore(make_session_factory(make_engine(database_url)))
    coordinator = Coordinator(store, registry, clock=clock)
    executor = JobExecutor(coordinator, claimer=Claimer(store, clock=coordinator.clock))
    return coordinator, executor


# ============================================================
# Poll
# ============================================================

def run_once(coordinator, executor, queues=(), batch_size=config.BATCH_SIZE):
    """Run one batch of ready jobs. Returns the outcome of every job touched."""
    relation = coordinator.ready()
    if executor.claimer is not None:
        relation = relation.where(~JobRecord.queue_name.startswith(executor.claimer.prefix))
    if queues:
        relation = relation.queue(*queues)

    outcomes = []
    for handle in relation.first(batch_size):
        try:
            result = executor.execute(handle)
            outcomes.append(result.outcome.value)
        except ClaimLost:
            coordinator.release(handle)
            outcomes.append("skipped")
        except (RowQueueError, SQLAlchemyError):
            raise
        except Exception as e:
            # discarded; the error came from the job body
            log_event("job_error", worker_id=WORKER_ID, job_id=handle.job_id, error=type(e).__name__, message=str(e))
            outcomes.append("discarded")
    return outcomes


def run(coordinator, executor, queues=(), batch_size=config.BATCH_SIZE,
        poll_seconds=config.POLL_SECONDS, max_loops=config.MAX_LOOPS):
    loops = 0

    while True:
        if max_loops and loops >= max_loops:
            log_event("worker_exit", worker_id=WORKER_ID, reason="max_loops")
            break

        loops += 1
        metrics.heartbeat.inc()

        try:
            outcomes = run_once(coordinator, executor, queues, batch_size)
        except OperationalError:
            log_event("database_unavailable", worker_id=WORKER_ID)
            time.sleep(0.5)
            continue

        if all(o == "skipped" for o in outcomes):
            time.sleep(poll_seconds)


if __name__ == "__main__":
    if config.METRICS_ENABLED:
        start_http_server(config.METRICS_PORT)

    coordinator, executor = build(load_registry(config.JOBS_MODULE))
    log_event("worker_started", worker_id=WORKER_ID, queues=config.WORKER_QUEUES)
    run(coordinator, executor, queues=config.WORKER_QUEUES)
