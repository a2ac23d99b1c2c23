"""planning_etl.store

Store contract consumed by the reconciliation engine, and its PostgreSQL
implementation.

The engine depends only on the EventStore operation shapes: exact-match
batched finds, single inserts, duplicate-tolerant bulk inserts and
update-by-id.  Uniqueness constraints in the schema (event name, location
name, event/location pair, phase tuple, work-category tuple) are what
actually prevents duplicates; every bulk insert here is
``ON CONFLICT DO NOTHING`` and reports only the rows it really created.

Transactions: PostgresEventStore never commits.  On an autocommit
connection each statement stands alone; ``transaction()`` wraps a block in
one atomic unit (a savepoint when already inside a transaction).
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Protocol

import psycopg
from psycopg.conninfo import conninfo_to_dict

log = logging.getLogger(__name__)

PhaseKey = tuple[str, date, date]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EventRecord:
    id: str
    name: str
    start_date: date
    end_date: date
    status: str


@dataclass(frozen=True)
class WorkCategoryRecord:
    id: str
    event_id: str
    name: str
    phase: str
    estimated_effort_hours: Decimal


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class EventStore(Protocol):
    def transaction(self) -> AbstractContextManager: ...

    # events
    def find_events_by_name(self, names: list[str]) -> dict[str, EventRecord]: ...

    def insert_event(
        self, name: str, start_date: date, end_date: date, status: str
    ) -> tuple[EventRecord, bool]:
        """Return (record, created); a concurrent duplicate yields (existing, False)."""
        ...

    def update_event(
        self, event_id: str, start_date: date, end_date: date, status: str
    ) -> EventRecord: ...

    # locations
    def find_locations_by_name(self, names: list[str]) -> dict[str, str]: ...

    def insert_locations(self, names: list[str]) -> int: ...

    # event ↔ location links
    def find_linked_location_ids(self, event_id: str, location_ids: list[str]) -> set[str]: ...

    def insert_event_locations(self, event_id: str, location_ids: list[str]) -> int: ...

    def delete_event_locations(self, event_id: str) -> int: ...

    # phases
    def find_phase_keys(self, event_id: str) -> set[PhaseKey]: ...

    def insert_phases(self, event_id: str, keys: list[PhaseKey]) -> int: ...

    def delete_phases(self, event_id: str) -> int: ...

    # work categories
    def find_work_categories(self, event_ids: list[str]) -> list[WorkCategoryRecord]: ...

    def insert_work_categories(
        self, rows: list[tuple[str, str, str, Decimal]]
    ) -> int: ...

    def update_work_category_estimate(self, work_category_id: str, hours: Decimal) -> None: ...


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

_EVENT_COLUMNS = "id, name, start_date, end_date, status"


def _event_record(row: tuple) -> EventRecord:
    return EventRecord(
        id=str(row[0]),
        name=row[1],
        start_date=row[2],
        end_date=row[3],
        status=row[4],
    )


class PostgresEventStore:
    """EventStore backed by a psycopg connection.  Caller owns the connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    def transaction(self) -> AbstractContextManager:
        return self.conn.transaction()

    # ------------------------------------------------------------------ #
    # Events                                                              #
    # ------------------------------------------------------------------ #

    def find_events_by_name(self, names: list[str]) -> dict[str, EventRecord]:
        if not names:
            return {}
        rows = self.conn.execute(
            f"SELECT {_EVENT_COLUMNS} FROM event WHERE name = ANY(%s::text[])",
            (list(names),),
        ).fetchall()
        return {row[1]: _event_record(row) for row in rows}

    def insert_event(
        self, name: str, start_date: date, end_date: date, status: str
    ) -> tuple[EventRecord, bool]:
        row = self.conn.execute(
            f"""
            INSERT INTO event (name, start_date, end_date, status)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (name) DO NOTHING
            RETURNING {_EVENT_COLUMNS}
            """,
            (name, start_date, end_date, status),
        ).fetchone()
        if row:
            return _event_record(row), True
        # Lost a race with a concurrent import: the winner's row is the event.
        existing = self.conn.execute(
            f"SELECT {_EVENT_COLUMNS} FROM event WHERE name = %s",
            (name,),
        ).fetchone()
        return _event_record(existing), False

    def update_event(
        self, event_id: str, start_date: date, end_date: date, status: str
    ) -> EventRecord:
        row = self.conn.execute(
            f"""
            UPDATE event
               SET start_date = %s,
                   end_date = %s,
                   status = %s,
                   updated_at = now()
             WHERE id = %s
            RETURNING {_EVENT_COLUMNS}
            """,
            (start_date, end_date, status, event_id),
        ).fetchone()
        if row is None:
            raise LookupError(f"event {event_id} no longer exists")
        return _event_record(row)

    # ------------------------------------------------------------------ #
    # Locations                                                           #
    # ------------------------------------------------------------------ #

    def find_locations_by_name(self, names: list[str]) -> dict[str, str]:
        if not names:
            return {}
        rows = self.conn.execute(
            "SELECT id, name FROM location WHERE name = ANY(%s::text[])",
            (list(names),),
        ).fetchall()
        return {row[1]: str(row[0]) for row in rows}

    def insert_locations(self, names: list[str]) -> int:
        if not names:
            return 0
        created = self.conn.execute(
            """
            INSERT INTO location (name)
            SELECT unnest(%s::text[])
            ON CONFLICT (name) DO NOTHING
            RETURNING id
            """,
            (list(names),),
        ).fetchall()
        return len(created)

    # ------------------------------------------------------------------ #
    # Event ↔ location links                                              #
    # ------------------------------------------------------------------ #

    def find_linked_location_ids(self, event_id: str, location_ids: list[str]) -> set[str]:
        if not location_ids:
            return set()
        rows = self.conn.execute(
            """
            SELECT location_id FROM event_location
            WHERE event_id = %s AND location_id = ANY(%s::uuid[])
            """,
            (event_id, list(location_ids)),
        ).fetchall()
        return {str(row[0]) for row in rows}

    def insert_event_locations(self, event_id: str, location_ids: list[str]) -> int:
        if not location_ids:
            return 0
        created = self.conn.execute(
            """
            INSERT INTO event_location (event_id, location_id)
            SELECT %s, unnest(%s::uuid[])
            ON CONFLICT (event_id, location_id) DO NOTHING
            RETURNING id
            """,
            (event_id, list(location_ids)),
        ).fetchall()
        return len(created)

    def delete_event_locations(self, event_id: str) -> int:
        cur = self.conn.execute(
            "DELETE FROM event_location WHERE event_id = %s", (event_id,)
        )
        return cur.rowcount

    # ------------------------------------------------------------------ #
    # Phases                                                              #
    # ------------------------------------------------------------------ #

    def find_phase_keys(self, event_id: str) -> set[PhaseKey]:
        rows = self.conn.execute(
            "SELECT name, start_date, end_date FROM event_phase WHERE event_id = %s",
            (event_id,),
        ).fetchall()
        return {(row[0], row[1], row[2]) for row in rows}

    def insert_phases(self, event_id: str, keys: list[PhaseKey]) -> int:
        if not keys:
            return 0
        names = [k[0] for k in keys]
        starts = [k[1] for k in keys]
        ends = [k[2] for k in keys]
        created = self.conn.execute(
            """
            INSERT INTO event_phase (event_id, name, start_date, end_date)
            SELECT %s, p.name, p.start_date, p.end_date
            FROM unnest(%s::text[], %s::date[], %s::date[])
                 AS p(name, start_date, end_date)
            ON CONFLICT (event_id, name, start_date, end_date) DO NOTHING
            RETURNING id
            """,
            (event_id, names, starts, ends),
        ).fetchall()
        return len(created)

    def delete_phases(self, event_id: str) -> int:
        cur = self.conn.execute(
            "DELETE FROM event_phase WHERE event_id = %s", (event_id,)
        )
        return cur.rowcount

    # ------------------------------------------------------------------ #
    # Work categories                                                     #
    # ------------------------------------------------------------------ #

    def find_work_categories(self, event_ids: list[str]) -> list[WorkCategoryRecord]:
        if not event_ids:
            return []
        rows = self.conn.execute(
            """
            SELECT id, event_id, name, phase, estimated_effort_hours
            FROM work_category
            WHERE event_id = ANY(%s::uuid[])
            """,
            (list(event_ids),),
        ).fetchall()
        return [
            WorkCategoryRecord(
                id=str(row[0]),
                event_id=str(row[1]),
                name=row[2],
                phase=row[3],
                estimated_effort_hours=row[4],
            )
            for row in rows
        ]

    def insert_work_categories(self, rows: list[tuple[str, str, str, Decimal]]) -> int:
        if not rows:
            return 0
        created = self.conn.execute(
            """
            INSERT INTO work_category (event_id, name, phase, estimated_effort_hours)
            SELECT w.event_id, w.name, w.phase, w.hours
            FROM unnest(%s::uuid[], %s::text[], %s::text[], %s::numeric[])
                 AS w(event_id, name, phase, hours)
            ON CONFLICT (event_id, name, phase) DO NOTHING
            RETURNING id
            """,
            (
                [r[0] for r in rows],
                [r[1] for r in rows],
                [r[2] for r in rows],
                [r[3] for r in rows],
            ),
        ).fetchall()
        return len(created)

    def update_work_category_estimate(self, work_category_id: str, hours: Decimal) -> None:
        self.conn.execute(
            """
            UPDATE work_category
               SET estimated_effort_hours = %s, updated_at = now()
             WHERE id = %s
            """,
            (hours, work_category_id),
        )


# ---------------------------------------------------------------------------
# Purge
# ---------------------------------------------------------------------------

# Children before parents.
PURGE_TABLES: tuple[str, ...] = (
    "event_phase",
    "event_location",
    "work_category",
    "event",
    "location",
)


def purge_import_data(conn: psycopg.Connection) -> dict[str, int]:
    """Delete every imported planning row in one transaction.

    Returns {table: deleted_row_count}.
    """
    counts: dict[str, int] = {}
    with conn.transaction():
        for table in PURGE_TABLES:
            cur = conn.execute(f"DELETE FROM {table}")
            counts[table] = cur.rowcount
    log.info("Purged import data: %s", counts)
    return counts


def describe_dsn(dsn: str | None) -> str:
    """Return ``user@host/dbname`` for a DSN without exposing credentials."""
    if not dsn:
        return "DB_DSN is not set"
    try:
        params = conninfo_to_dict(dsn)
    except psycopg.ProgrammingError:
        return "DB_DSN is invalid"
    user = params.get("user") or "unknown-user"
    host = params.get("host") or "unknown-host"
    if params.get("port"):
        host = f"{host}:{params['port']}"
    dbname = params.get("dbname") or "unknown-db"
    return f"{user}@{host}/{dbname}"


def unique_in_order(values: Iterable[str]) -> list[str]:
    """De-duplicate while keeping first-seen order."""
    return list(dict.fromkeys(values))
