from pathlib import Path

import psycopg2

from rowqueue.common.config import DATABASE_URL
from rowqueue.common.events import log_event


def repo_root() -> Path:
    # rowqueue/db/migrate.py -> repo root is 2 levels up from rowqueue/db
    return Path(__file__).resolve().parents[2]


def migrations_dir() -> Path:
    return repo_root() / "migrations"


def list_sql_migrations(dirpath: Path) -> list[Path]:
    return sorted([p for p in dirpath.glob("*.sql") if p.is_file()])


def libpq_dsn(url: str) -> str:
    """Strip the SQLAlchemy driver suffix so psycopg2 accepts the URL."""
    scheme, sep, rest = url.partition("://")
    if not sep or not scheme.startswith("postgresql"):
        raise RuntimeError(f"migrations require a postgresql DATABASE_URL, got {scheme or url}")
    return f"postgresql://{rest}"


def apply_migrations(cur, files: list[Path]) -> int:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          filename TEXT PRIMARY KEY,
          applied_at TIMESTAMP NOT NULL DEFAULT NOW()
        );
        """
    )

    cur.execute("SELECT filename FROM schema_migrations;")
    applied = {r[0] for r in cur.fetchall()}

    applied_now = 0
    for path in files:
        name = path.name
        if name in applied:
            continue

        log_event("migration_applying", filename=name)
        cur.execute(path.read_text(encoding="utf-8"))
        cur.execute("INSERT INTO schema_migrations(filename) VALUES (%s)", (name,))
        applied_now += 1

    return applied_now


def main(database_url: str = DATABASE_URL):
    mdir = migrations_dir()
    files = list_sql_migrations(mdir)

    if not files:
        log_event("migrations_missing", path=str(mdir))
        return

    with psycopg2.connect(libpq_dsn(database_url)) as conn:
        with conn.cursor() as cur:
            applied_now = apply_migrations(cur, files)

    log_event("migrations_done", applied=applied_now)


if __name__ == "__main__":
    main()
