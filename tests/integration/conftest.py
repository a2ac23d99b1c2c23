"""Integration test fixtures.

Applies migrations 0001–0003 against an ephemeral PostgreSQL database
provided by pytest-postgresql.  Collection is skipped entirely when no
PostgreSQL server binaries are installed.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

from planning_etl.store import PostgresEventStore

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = sorted((PROJECT_ROOT / "migrations").glob("*.sql"))

if shutil.which("pg_ctl") is None and shutil.which("pg_config") is None:
    collect_ignore_glob = ["test_*.py"]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (autocommit psycopg connection, dsn) with schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture
def pg_store(db_conn) -> PostgresEventStore:
    conn, _ = db_conn
    return PostgresEventStore(conn)
