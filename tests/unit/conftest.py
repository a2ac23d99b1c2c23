"""Unit test fixtures: an in-memory EventStore."""

from __future__ import annotations

import copy
import itertools
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

import pytest

from planning_etl.store import EventRecord, WorkCategoryRecord


class FakeEventStore:
    """Dict-backed EventStore with the same duplicate-tolerant semantics.

    ``calls`` records every operation name so tests can assert on round
    trips; set ``fail_on`` to an operation name to make it raise.
    """

    def __init__(self) -> None:
        self.events: dict[str, EventRecord] = {}
        self.locations: dict[str, str] = {}
        self.links: set[tuple[str, str]] = set()
        self.phases: set[tuple[str, str, date, date]] = set()
        self.work_categories: dict[str, WorkCategoryRecord] = {}
        self.calls: list[str] = []
        self.transactions = 0
        self.fail_on: str | None = None
        self._ids = itertools.count(1)

    # -- helpers -----------------------------------------------------------

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise RuntimeError(f"{name} failed")

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _state(self):
        return (self.events, self.locations, self.links, self.phases, self.work_categories)

    def event(self, name: str) -> EventRecord:
        return self.events[name]

    def phases_of(self, name: str) -> set[tuple[str, date, date]]:
        event_id = self.events[name].id
        return {(p[1], p[2], p[3]) for p in self.phases if p[0] == event_id}

    def locations_of(self, name: str) -> set[str]:
        event_id = self.events[name].id
        by_id = {v: k for k, v in self.locations.items()}
        return {by_id[loc] for ev, loc in self.links if ev == event_id}

    # -- EventStore --------------------------------------------------------

    @contextmanager
    def transaction(self):
        self.transactions += 1
        snapshot = copy.deepcopy(self._state())
        try:
            yield
        except BaseException:
            (self.events, self.locations, self.links,
             self.phases, self.work_categories) = snapshot
            raise

    def find_events_by_name(self, names):
        self._call("find_events_by_name")
        return {n: self.events[n] for n in names if n in self.events}

    def insert_event(self, name, start_date, end_date, status):
        self._call("insert_event")
        if name in self.events:
            return self.events[name], False
        record = EventRecord(self._new_id("evt"), name, start_date, end_date, status)
        self.events[name] = record
        return record, True

    def update_event(self, event_id, start_date, end_date, status):
        self._call("update_event")
        for name, record in self.events.items():
            if record.id == event_id:
                updated = EventRecord(event_id, name, start_date, end_date, status)
                self.events[name] = updated
                return updated
        raise LookupError(event_id)

    def find_locations_by_name(self, names):
        self._call("find_locations_by_name")
        return {n: self.locations[n] for n in names if n in self.locations}

    def insert_locations(self, names):
        self._call("insert_locations")
        created = 0
        for name in names:
            if name not in self.locations:
                self.locations[name] = self._new_id("loc")
                created += 1
        return created

    def find_linked_location_ids(self, event_id, location_ids):
        self._call("find_linked_location_ids")
        return {loc for ev, loc in self.links if ev == event_id and loc in location_ids}

    def insert_event_locations(self, event_id, location_ids):
        self._call("insert_event_locations")
        before = len(self.links)
        self.links.update((event_id, loc) for loc in location_ids)
        return len(self.links) - before

    def delete_event_locations(self, event_id):
        self._call("delete_event_locations")
        doomed = {link for link in self.links if link[0] == event_id}
        self.links -= doomed
        return len(doomed)

    def find_phase_keys(self, event_id):
        self._call("find_phase_keys")
        return {(p[1], p[2], p[3]) for p in self.phases if p[0] == event_id}

    def insert_phases(self, event_id, keys):
        self._call("insert_phases")
        before = len(self.phases)
        self.phases.update((event_id, *key) for key in keys)
        return len(self.phases) - before

    def delete_phases(self, event_id):
        self._call("delete_phases")
        doomed = {p for p in self.phases if p[0] == event_id}
        self.phases -= doomed
        return len(doomed)

    def find_work_categories(self, event_ids):
        self._call("find_work_categories")
        return [wc for wc in self.work_categories.values() if wc.event_id in event_ids]

    def insert_work_categories(self, rows):
        self._call("insert_work_categories")
        existing = {(wc.event_id, wc.name, wc.phase) for wc in self.work_categories.values()}
        created = 0
        for event_id, name, phase, hours in rows:
            if (event_id, name, phase) in existing:
                continue
            wc_id = self._new_id("wc")
            self.work_categories[wc_id] = WorkCategoryRecord(
                wc_id, event_id, name, phase, Decimal(hours)
            )
            existing.add((event_id, name, phase))
            created += 1
        return created

    def update_work_category_estimate(self, work_category_id, hours):
        self._call("update_work_category_estimate")
        wc = self.work_categories[work_category_id]
        self.work_categories[work_category_id] = WorkCategoryRecord(
            wc.id, wc.event_id, wc.name, wc.phase, Decimal(hours)
        )


@pytest.fixture
def store() -> FakeEventStore:
    return FakeEventStore()
