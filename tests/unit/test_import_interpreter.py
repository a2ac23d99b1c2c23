"""Unit tests for planning_etl.import_interpreter."""

from datetime import date

from planning_etl.import_contract import (
    SIGNAL_DUPLICATE_ROW,
    SIGNAL_EMPTY_REQUIRED_FIELD,
    SIGNAL_END_BEFORE_START,
    SIGNAL_INCONSISTENT_EVENT_DATES,
    SIGNAL_INVALID_DATE_FORMAT,
    SIGNAL_INVALID_ROW,
    SIGNAL_NO_EVENT_PHASE,
    SIGNAL_OVERLAPPING_LOCATION_SPAN,
    SIGNAL_PHASE_OUTSIDE_EVENT_RANGE,
    SIGNAL_UNKNOWN_PHASE,
    EventImportRow,
)
from planning_etl.import_interpreter import (
    duplicate_row_signals,
    interpret_import_rows,
    interpret_row,
    row_set_signals,
)


def _raw(**overrides):
    row = {
        "eventName": "Summer Festival",
        "locationName": "Main Stage",
        "phase": "EVENT",
        "startDate": "2024-06-06",
        "endDate": "2024-06-10",
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# Row-level
# ---------------------------------------------------------------------------

class TestInterpretRow:
    def test_clean_row_is_interpreted(self):
        row = interpret_row(0, _raw())
        assert row.errors == []
        assert row.interpreted.start_date == date(2024, 6, 6)
        assert row.to_dict()["interpreted"]["startDate"] == "2024-06-06"

    def test_every_empty_field_is_reported(self):
        row = interpret_row(4, {"eventName": " ", "phase": "EVENT"})
        fields = [e.context["field"] for e in row.errors if e.type == SIGNAL_EMPTY_REQUIRED_FIELD]
        assert fields == ["eventName", "locationName", "startDate", "endDate"]
        assert all(e.row_numbers == [4] for e in row.errors)
        assert row.interpreted is None
        assert "interpreted" not in row.to_dict()

    def test_unknown_phase(self):
        row = interpret_row(2, _raw(phase="BUILD"))
        [error] = row.errors
        assert error.type == SIGNAL_UNKNOWN_PHASE
        assert error.severity == "error"
        assert error.row_numbers == [2]
        assert error.context["phase"] == "BUILD"
        assert "Unknown phase" in error.message

    def test_invalid_date_format(self):
        row = interpret_row(0, _raw(startDate="2024-13-01"))
        [error] = row.errors
        assert error.type == SIGNAL_INVALID_DATE_FORMAT
        assert error.context == {"date": "2024-13-01", "field": "startDate"}

    def test_end_before_start(self):
        row = interpret_row(0, _raw(startDate="2024-06-10", endDate="2024-06-01"))
        [error] = row.errors
        assert error.type == SIGNAL_END_BEFORE_START
        assert error.message == "End date (2024-06-01) is before start date (2024-06-10)"

    def test_multiple_errors_accumulate(self):
        row = interpret_row(0, _raw(phase="BUILD", endDate="nope"))
        assert {e.type for e in row.errors} == {SIGNAL_UNKNOWN_PHASE, SIGNAL_INVALID_DATE_FORMAT}

    def test_non_object_row(self):
        row = interpret_row(1, ["a", "b"])
        [error] = row.errors
        assert error.type == SIGNAL_INVALID_ROW
        assert row.raw == {}

    def test_raw_is_echoed(self):
        raw = _raw(notes="bring chairs")
        assert interpret_row(0, raw).raw == raw


# ---------------------------------------------------------------------------
# Whole import
# ---------------------------------------------------------------------------

class TestInterpretImportRows:
    def test_rows_with_errors_are_kept(self):
        preview = interpret_import_rows([_raw(), _raw(phase="BUILD"), _raw(eventName="")])
        assert [r.index for r in preview.rows] == [0, 1, 2]
        assert preview.summary.total_rows == 3
        assert preview.summary.rows_with_errors == 2

    def test_all_invalid_still_returns_preview(self):
        preview = interpret_import_rows([_raw(phase="X"), "junk"])
        body = preview.to_dict()
        assert body["summary"]["rowsWithErrors"] == 2
        assert body["summary"]["eventsDetected"] == 0
        assert body["globalSignals"] == []

    def test_counts_come_from_clean_rows_only(self):
        preview = interpret_import_rows([
            _raw(),
            _raw(locationName="Hall B", phase="ASSEMBLY", startDate="2024-06-01", endDate="2024-06-05"),
            _raw(eventName="Broken", locationName="Hall C", phase="BUILD"),
        ])
        assert preview.summary.events_detected == 1
        assert preview.summary.locations_detected == 2

    def test_no_event_phase_warning(self):
        preview = interpret_import_rows([
            _raw(phase="ASSEMBLY", startDate="2024-06-01", endDate="2024-06-05"),
            _raw(phase="DISMANTLE", startDate="2024-06-11", endDate="2024-06-12"),
        ])
        [signal] = preview.global_signals
        assert signal.type == SIGNAL_NO_EVENT_PHASE
        assert signal.severity == "warning"
        assert signal.row_numbers == [0, 1]
        assert signal.context == {"eventName": "Summer Festival"}

    def test_inconsistent_event_dates_warning(self):
        preview = interpret_import_rows([
            _raw(),
            _raw(locationName="Hall B", startDate="2024-06-07"),
        ])
        [signal] = preview.global_signals
        assert signal.type == SIGNAL_INCONSISTENT_EVENT_DATES
        assert signal.row_numbers == [0, 1]

    def test_consistent_event_dates_across_locations(self):
        preview = interpret_import_rows([_raw(), _raw(locationName="Hall B")])
        assert preview.global_signals == []

    def test_events_are_checked_independently(self):
        preview = interpret_import_rows([
            _raw(eventName="A"),
            _raw(eventName="B", locationName="Hall B", phase="MOVE_IN"),
        ])
        assert [s.context["eventName"] for s in preview.global_signals] == ["B"]

    def test_invalid_rows_do_not_feed_event_signals(self):
        preview = interpret_import_rows([
            _raw(),
            _raw(startDate="2024-06-07", endDate="bad"),
        ])
        assert preview.global_signals == []

    def test_duplicate_row_warning(self):
        preview = interpret_import_rows([_raw(), _raw(eventName=" Summer Festival ")])
        assert preview.rows[0].warnings == []
        [warning] = preview.rows[1].warnings
        assert warning.type == SIGNAL_DUPLICATE_ROW
        assert warning.context == {"duplicateOf": 0}
        assert preview.summary.rows_with_warnings == 1
        assert preview.summary.rows_with_errors == 0

    def test_wire_shape(self):
        body = interpret_import_rows([_raw()]).to_dict()
        assert set(body) == {"rows", "summary", "globalSignals"}
        assert set(body["rows"][0]) == {"index", "raw", "interpreted", "errors", "warnings"}
        assert set(body["summary"]) == {
            "totalRows", "rowsWithErrors", "rowsWithWarnings",
            "eventsDetected", "locationsDetected",
        }


# ---------------------------------------------------------------------------
# Phase range + location overlap
# ---------------------------------------------------------------------------

def _signals_of(preview, signal_type):
    return [s for s in preview.global_signals if s.type == signal_type]


class TestPhaseOutsideEventRange:
    def test_phase_after_event_span(self):
        preview = interpret_import_rows([
            _raw(eventName="Expo", locationName="Hall A"),
            _raw(eventName="Expo", locationName="Hall B", phase="ASSEMBLY",
                 startDate="2024-07-01", endDate="2024-07-03"),
        ])
        [signal] = _signals_of(preview, SIGNAL_PHASE_OUTSIDE_EVENT_RANGE)
        assert signal.severity == "warning"
        assert signal.row_numbers == [1]
        assert signal.context == {
            "eventName": "Expo",
            "eventStart": "2024-06-06",
            "eventEnd": "2024-06-10",
        }

    def test_phase_within_event_span(self):
        preview = interpret_import_rows([
            _raw(locationName="Hall A"),
            _raw(locationName="Hall B", phase="MOVE_IN", startDate="2024-06-06", endDate="2024-06-07"),
        ])
        assert _signals_of(preview, SIGNAL_PHASE_OUTSIDE_EVENT_RANGE) == []

    def test_range_spans_every_primary_row(self):
        preview = interpret_import_rows([
            _raw(locationName="Hall A", startDate="2024-06-01", endDate="2024-06-03"),
            _raw(locationName="Hall B", startDate="2024-06-08", endDate="2024-06-10"),
            _raw(locationName="Hall C", phase="MOVE_OUT", startDate="2024-06-04", endDate="2024-06-05"),
        ])
        assert _signals_of(preview, SIGNAL_PHASE_OUTSIDE_EVENT_RANGE) == []

    def test_no_primary_phase_is_reported_once(self):
        preview = interpret_import_rows([
            _raw(phase="ASSEMBLY", startDate="2024-06-01", endDate="2024-06-05"),
        ])
        assert [s.type for s in preview.global_signals] == [SIGNAL_NO_EVENT_PHASE]


class TestOverlappingLocationSpan:
    def test_two_events_share_a_location(self):
        preview = interpret_import_rows([
            _raw(eventName="Expo", locationName="Hall A"),
            _raw(eventName="Fair", locationName="Hall A", startDate="2024-06-08", endDate="2024-06-09"),
        ])
        [signal] = _signals_of(preview, SIGNAL_OVERLAPPING_LOCATION_SPAN)
        assert signal.row_numbers == [1]
        assert signal.context == {"locationName": "Hall A"}
        assert signal.message == 'Location "Hall A" has overlapping spans'

    def test_adjacent_spans_do_not_overlap(self):
        preview = interpret_import_rows([
            _raw(eventName="Expo", locationName="Hall A", startDate="2024-06-01", endDate="2024-06-05"),
            _raw(eventName="Fair", locationName="Hall A", startDate="2024-06-06", endDate="2024-06-10"),
        ])
        assert _signals_of(preview, SIGNAL_OVERLAPPING_LOCATION_SPAN) == []

    def test_shared_end_day_overlaps(self):
        preview = interpret_import_rows([
            _raw(eventName="Expo", locationName="Hall A", startDate="2024-06-01", endDate="2024-06-06"),
            _raw(eventName="Fair", locationName="Hall A", startDate="2024-06-06", endDate="2024-06-10"),
        ])
        assert len(_signals_of(preview, SIGNAL_OVERLAPPING_LOCATION_SPAN)) == 1

    def test_each_location_reported_separately(self):
        preview = interpret_import_rows([
            _raw(eventName="A", locationName="Hall A"),
            _raw(eventName="B", locationName="Hall B"),
            _raw(eventName="C", locationName="Hall A"),
            _raw(eventName="D", locationName="Hall B"),
            _raw(eventName="E", locationName="Hall A"),
        ])
        signals = _signals_of(preview, SIGNAL_OVERLAPPING_LOCATION_SPAN)
        assert [(s.context["locationName"], s.row_numbers) for s in signals] == [
            ("Hall A", [2, 4]),
            ("Hall B", [3]),
        ]

    def test_location_names_are_case_sensitive(self):
        preview = interpret_import_rows([
            _raw(eventName="Expo", locationName="Hall A"),
            _raw(eventName="Fair", locationName="hall a"),
        ])
        assert _signals_of(preview, SIGNAL_OVERLAPPING_LOCATION_SPAN) == []


def _canonical(event, location, phase, start, end):
    return EventImportRow(event, location, phase, date.fromisoformat(start), date.fromisoformat(end))


def test_signals_over_canonical_rows():
    rows = list(enumerate([
        _canonical("Expo", "Hall A", "EVENT", "2024-06-06", "2024-06-10"),
        _canonical("Expo", "Hall A", "ASSEMBLY", "2024-07-01", "2024-07-03"),
        _canonical("Fair", "Hall A", "EVENT", "2024-06-08", "2024-06-09"),
        _canonical("Fair", "Hall A", "EVENT", "2024-06-08", "2024-06-09"),
    ]))
    assert [s.type for s in row_set_signals(rows)] == [
        SIGNAL_PHASE_OUTSIDE_EVENT_RANGE,
        SIGNAL_OVERLAPPING_LOCATION_SPAN,
    ]
    [duplicate] = duplicate_row_signals(rows)
    assert duplicate.row_numbers == [3]
    assert duplicate.context == {"duplicateOf": 2}
