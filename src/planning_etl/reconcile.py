"""planning_etl.reconcile

Reconciliation engine: materializes canonical rows into an EventStore.

Two named strategies share one interface:

  merge    Row-level reconciliation.  Events are created or reused (updated
           only when range/status differ), locations, links and phases are
           created only when missing.  Nothing the import does not mention
           is touched.  Runs as independent statements, so it is safe on a
           pooled/autocommit connection; a failure part way leaves an
           incomplete but self-consistent state.

  replace  Authoritative reconciliation.  Every touched event's links and
           phases are deleted and recreated from the import.  The whole
           multi-event call runs inside ``store.transaction()``: either every
           group applies or none does.

Both are idempotent for a repeated identical import except that replace
recreates links and phases (and counts them) every time.

Each stage returns its own ImportCounters delta; deltas are summed at the
top.  Any store error propagates unchanged and no partial counters are
returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Iterable, Protocol

from planning_etl.grouping import compute_event_date_range, group_rows_by_event
from planning_etl.import_contract import EVENT_STATUS_ACTIVE, EventImportRow
from planning_etl.store import EventRecord, EventStore, PhaseKey, unique_in_order

log = logging.getLogger(__name__)

MODE_MERGE = "merge"
MODE_REPLACE = "replace"


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

@dataclass
class ImportCounters:
    events_created: int = 0
    events_reused: int = 0
    locations_created: int = 0
    event_locations_created: int = 0
    phases_created: int = 0
    # Subset of events_reused that needed a write.
    events_updated: int = 0

    def __add__(self, other: ImportCounters) -> ImportCounters:
        return ImportCounters(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )

    def to_dict(self) -> dict[str, int]:
        """Response shape returned to import callers."""
        return {
            "eventsCreated": self.events_created,
            "eventsReused": self.events_reused,
            "locationsCreated": self.locations_created,
            "eventLocationsCreated": self.event_locations_created,
            "phasesCreated": self.phases_created,
        }

    def to_report_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def _reconcile_event(
    store: EventStore,
    name: str,
    rows: list[EventImportRow],
    existing: EventRecord | None,
) -> tuple[EventRecord, ImportCounters]:
    date_range = compute_event_date_range(rows)

    if existing is None:
        record, created = store.insert_event(
            name, date_range.start, date_range.end, EVENT_STATUS_ACTIVE
        )
        if created:
            log.debug("event %r created (%s..%s)", name, date_range.start, date_range.end)
            return record, ImportCounters(events_created=1)
        # A concurrent import created it between our lookup and insert.
        existing = record

    delta = ImportCounters(events_reused=1)
    unchanged = (
        existing.start_date == date_range.start
        and existing.end_date == date_range.end
        and existing.status == EVENT_STATUS_ACTIVE
    )
    if unchanged:
        log.debug("event %r reused unchanged", name)
        return existing, delta

    record = store.update_event(
        existing.id, date_range.start, date_range.end, EVENT_STATUS_ACTIVE
    )
    log.debug(
        "event %r updated: %s..%s/%s -> %s..%s/%s",
        name,
        existing.start_date, existing.end_date, existing.status,
        date_range.start, date_range.end, EVENT_STATUS_ACTIVE,
    )
    delta.events_updated = 1
    return record, delta


def _ensure_locations(
    store: EventStore, names: list[str]
) -> tuple[dict[str, str], ImportCounters]:
    """Resolve every location name to an id, creating the missing ones."""
    found = store.find_locations_by_name(names)
    missing = [name for name in names if name not in found]
    created = 0
    if missing:
        created = store.insert_locations(missing)
        # Re-read so ids created by a concurrent import are picked up too.
        found.update(store.find_locations_by_name(missing))
    unresolved = [name for name in names if name not in found]
    if unresolved:
        raise LookupError(f"locations could not be resolved: {', '.join(unresolved)}")
    return found, ImportCounters(locations_created=created)


def _link_locations(
    store: EventStore, event_id: str, location_ids: list[str]
) -> ImportCounters:
    linked = store.find_linked_location_ids(event_id, location_ids)
    missing = [loc_id for loc_id in location_ids if loc_id not in linked]
    created = store.insert_event_locations(event_id, missing) if missing else 0
    return ImportCounters(event_locations_created=created)


def _add_phases(
    store: EventStore, event_id: str, keys: list[PhaseKey]
) -> ImportCounters:
    existing = store.find_phase_keys(event_id)
    missing = [key for key in keys if key not in existing]
    created = store.insert_phases(event_id, missing) if missing else 0
    return ImportCounters(phases_created=created)


def _phase_keys(rows: Iterable[EventImportRow]) -> list[PhaseKey]:
    return list(dict.fromkeys(row.phase_key for row in rows))


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class ReconcileStrategy(Protocol):
    name: str

    def apply(self, store: EventStore, rows: list[EventImportRow]) -> ImportCounters: ...


class MergeStrategy:
    """Additive row-level reconciliation; no surrounding transaction."""

    name = MODE_MERGE

    def apply(self, store: EventStore, rows: list[EventImportRow]) -> ImportCounters:
        return _apply_groups(store, rows, self._apply_children)

    @staticmethod
    def _apply_children(
        store: EventStore, event_id: str, location_ids: list[str], keys: list[PhaseKey]
    ) -> ImportCounters:
        return _link_locations(store, event_id, location_ids) + _add_phases(
            store, event_id, keys
        )


class ReplaceStrategy:
    """Delete-and-recreate links and phases of every touched event, atomically."""

    name = MODE_REPLACE

    def apply(self, store: EventStore, rows: list[EventImportRow]) -> ImportCounters:
        with store.transaction():
            return _apply_groups(store, rows, self._apply_children)

    @staticmethod
    def _apply_children(
        store: EventStore, event_id: str, location_ids: list[str], keys: list[PhaseKey]
    ) -> ImportCounters:
        links_deleted = store.delete_event_locations(event_id)
        phases_deleted = store.delete_phases(event_id)
        log.debug(
            "event %s: cleared %d link(s) and %d phase(s)",
            event_id, links_deleted, phases_deleted,
        )
        return ImportCounters(
            event_locations_created=store.insert_event_locations(event_id, location_ids),
            phases_created=store.insert_phases(event_id, keys),
        )


def _apply_groups(store: EventStore, rows: list[EventImportRow], apply_children) -> ImportCounters:
    groups = group_rows_by_event(rows)
    totals = ImportCounters()

    # Batched lookups up front: one round trip per entity kind.
    existing_events = store.find_events_by_name(list(groups))
    location_ids, delta = _ensure_locations(
        store, unique_in_order(row.location_name for row in rows)
    )
    totals += delta

    for name, event_rows in groups.items():
        record, delta = _reconcile_event(store, name, event_rows, existing_events.get(name))
        totals += delta
        event_location_ids = unique_in_order(
            location_ids[row.location_name] for row in event_rows
        )
        totals += apply_children(store, record.id, event_location_ids, _phase_keys(event_rows))

    return totals


STRATEGIES: dict[str, ReconcileStrategy] = {
    MODE_MERGE: MergeStrategy(),
    MODE_REPLACE: ReplaceStrategy(),
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def reconcile_rows(
    store: EventStore, rows: list[EventImportRow], mode: str = MODE_MERGE
) -> ImportCounters:
    """Reconcile canonical rows with the named strategy ("merge" | "replace")."""
    try:
        strategy = STRATEGIES[mode]
    except KeyError:
        raise ValueError(
            f"unknown reconcile mode {mode!r}; expected one of {sorted(STRATEGIES)}"
        ) from None

    if not rows:
        return ImportCounters()

    counters = strategy.apply(store, rows)
    log.info(
        "Reconciled %d row(s) with %s strategy: %s",
        len(rows), strategy.name, counters.to_report_dict(),
    )
    return counters
