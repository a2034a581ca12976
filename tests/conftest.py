import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import psycopg2


# Ensure repo root is importable so `rowqueue.*` works without an install
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from rowqueue.common.clock import Clock  # noqa: E402
from rowqueue.core.claim import Claimer  # noqa: E402
from rowqueue.core.coordinator import Coordinator  # noqa: E402
from rowqueue.core.executor import JobExecutor  # noqa: E402
from rowqueue.core.registry import JobRegistry  # noqa: E402
from rowqueue.core.store import RecordStore  # noqa: E402
from rowqueue.db.session import create_schema, make_engine, make_session_factory  # noqa: E402


class FrozenClock(Clock):
    def __init__(self, start=datetime(2026, 1, 1, 12, 0, 0)):
        self.current = start

    def now(self):
        return self.current

    def advance(self, seconds=1):
        self.current += timedelta(seconds=seconds)
        return self.current


@pytest.fixture(scope="session")
def pg_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url or not url.startswith("postgresql"):
        pytest.skip("DATABASE_URL is not a postgres URL; export DATABASE_URL to run Postgres-backed tests.")

    # If DB isn't reachable, skip instead of failing the whole suite.
    try:
        conn = psycopg2.connect(url.replace("postgresql+psycopg2://", "postgresql://"))
        conn.close()
    except Exception as e:
        pytest.skip(f"Postgres not reachable at DATABASE_URL: {e}")

    return url


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return RecordStore(make_session_factory(engine))


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def runs():
    return []


@pytest.fixture
def discards():
    return []


@pytest.fixture
def registry(runs, discards):
    registry = JobRegistry()

    @registry.job("record", attempts=2, wait=10)
    def record(*args):
        runs.extend(args)
        return list(args)

    @registry.job("fail", attempts=2, wait=10)
    def fail(message="boom"):
        raise RuntimeError(message)

    @registry.job("reject", discard_on=(ValueError,))
    def reject(message="bad input"):
        raise ValueError(message)

    @registry.after_discard
    def remember(job, error):
        discards.append((job.job_id, error))

    return registry


@pytest.fixture
def coordinator(store, registry, clock):
    return Coordinator(store, registry, clock=clock)


@pytest.fixture
def executor(coordinator):
    return JobExecutor(coordinator)


@pytest.fixture
def claimer(store, clock):
    return Claimer(store, clock=clock)


@pytest.fixture
def claiming_executor(coordinator, claimer):
    return JobExecutor(coordinator, claimer=claimer)


@pytest.fixture
def record_job(registry):
    return registry.resolve("record")


@pytest.fixture
def fail_job(registry):
    return registry.resolve("fail")
