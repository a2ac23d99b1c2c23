"""Grouping of canonical rows by event and event date-range computation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from planning_etl.import_contract import EventImportRow


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date


def group_rows_by_event(rows: Iterable[EventImportRow]) -> dict[str, list[EventImportRow]]:
    """Group rows by exact (case-sensitive) event name, first-seen order."""
    groups: dict[str, list[EventImportRow]] = {}
    for row in rows:
        groups.setdefault(row.event_name, []).append(row)
    return groups


def compute_event_date_range(rows: list[EventImportRow]) -> DateRange:
    """Return [min(start), max(end)] over the event's rows.

    When any row is tagged with the primary phase only those rows count;
    setup and teardown phases widen the range only for events that declare
    no primary span at all.
    """
    if not rows:
        raise ValueError("cannot compute a date range from zero rows")
    primary = [row for row in rows if row.is_primary]
    selected = primary or rows
    return DateRange(
        start=min(row.start_date for row in selected),
        end=max(row.end_date for row in selected),
    )


def event_date_ranges(rows: Iterable[EventImportRow]) -> dict[str, DateRange]:
    return {
        name: compute_event_date_range(event_rows)
        for name, event_rows in group_rows_by_event(rows).items()
    }
