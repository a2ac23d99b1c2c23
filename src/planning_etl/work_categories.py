"""planning_etl.work_categories

Dependent import: attaches estimated work effort to events that already
exist.

Rules:
  - Every referenced event must exist (exact name, one batched lookup).  If
    any is missing the call raises MissingEventsError before any write.
  - Identity is (event id, work category name, phase).
  - Missing tuples are batch-inserted, tolerating concurrent duplicates.
  - Existing tuples are updated only when the estimate differs.
  - Within one import the last row for an identity wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from planning_etl.normalize import cell_text, parse_numeric
from planning_etl.shared import ImportRequestError, MissingEventsError
from planning_etl.store import EventStore, unique_in_order

log = logging.getLogger(__name__)

WORK_CATEGORY_FIELDS = ("eventName", "phase", "workCategoryName", "estimatedEffortHours")


@dataclass(frozen=True)
class WorkCategoryImportRow:
    event_name: str
    phase: str
    work_category_name: str
    estimated_effort_hours: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventName": self.event_name,
            "phase": self.phase,
            "workCategoryName": self.work_category_name,
            "estimatedEffortHours": float(self.estimated_effort_hours),
        }


@dataclass
class WorkCategoryCounters:
    work_categories_created: int = 0
    work_categories_updated: int = 0
    events_matched: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "workCategoriesCreated": self.work_categories_created,
            "workCategoriesUpdated": self.work_categories_updated,
            "eventsMatched": self.events_matched,
        }


def work_category_rows_from_payload(raw_rows: list[Any]) -> list[WorkCategoryImportRow]:
    """Validate decoded request rows; raise ImportRequestError on the first bad row."""
    rows: list[WorkCategoryImportRow] = []
    for index, raw in enumerate(raw_rows):
        if not isinstance(raw, Mapping):
            raise ImportRequestError(f"Row {index}: row must be an object")
        for key in ("eventName", "phase", "workCategoryName"):
            if not cell_text(raw.get(key)):
                raise ImportRequestError(f"Row {index}: {key} is required")
        hours_raw = raw.get("estimatedEffortHours")
        hours = None if isinstance(hours_raw, bool) else parse_numeric(hours_raw)
        if hours is None:
            raise ImportRequestError(
                f"Row {index}: estimatedEffortHours must be a number"
            )
        if hours < 0:
            raise ImportRequestError(
                f"Row {index}: estimatedEffortHours must be >= 0"
            )
        rows.append(
            WorkCategoryImportRow(
                event_name=cell_text(raw["eventName"]),
                phase=cell_text(raw["phase"]),
                work_category_name=cell_text(raw["workCategoryName"]),
                estimated_effort_hours=hours,
            )
        )
    return rows


def reconcile_work_categories(
    store: EventStore, rows: list[WorkCategoryImportRow]
) -> WorkCategoryCounters:
    counters = WorkCategoryCounters()
    if not rows:
        return counters

    event_names = unique_in_order(row.event_name for row in rows)
    events = store.find_events_by_name(event_names)
    missing = [name for name in event_names if name not in events]
    if missing:
        log.warning("Work category import references unknown events: %s", missing)
        raise MissingEventsError(missing)
    counters.events_matched = len(events)

    event_ids = [events[name].id for name in event_names]
    existing = {
        (wc.event_id, wc.name, wc.phase): wc
        for wc in store.find_work_categories(event_ids)
    }

    to_create: dict[tuple[str, str, str], Decimal] = {}
    to_update: dict[str, Decimal] = {}
    for row in rows:
        key = (events[row.event_name].id, row.work_category_name, row.phase)
        current = existing.get(key)
        if current is None:
            to_create[key] = row.estimated_effort_hours
        elif current.estimated_effort_hours != row.estimated_effort_hours:
            to_update[current.id] = row.estimated_effort_hours
        else:
            # Identical later row cancels an earlier pending change.
            to_update.pop(current.id, None)

    if to_create:
        counters.work_categories_created = store.insert_work_categories(
            [(event_id, name, phase, hours) for (event_id, name, phase), hours in to_create.items()]
        )
    for work_category_id, hours in to_update.items():
        store.update_work_category_estimate(work_category_id, hours)
        counters.work_categories_updated += 1

    log.info("Work category import: %s", counters.to_dict())
    return counters
