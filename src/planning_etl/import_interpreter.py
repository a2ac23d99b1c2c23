"""planning_etl.import_interpreter

Read-only preview of an event import.

Turns loosely-typed raw rows (maps of column → text) into annotated preview
rows plus event- and location-level validation signals.  Unlike the
parser, a row is never dropped: rows with errors stay in the output,
marked, with no ``interpreted`` payload.  Nothing here touches storage
and nothing raises for data-quality problems.

Usage:
    from planning_etl.import_interpreter import interpret_import_rows

    preview = interpret_import_rows(records)
    preview.to_dict()  # {"rows": [...], "summary": {...}, "globalSignals": [...]}
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

from planning_etl.import_contract import (
    PHASE_TYPES,
    PRIMARY_PHASE,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
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
    ValidationSignal,
)
from planning_etl.normalize import cell_text, parse_iso_date

# (source row index, canonical row)
IndexedRow = tuple[int, EventImportRow]

_FIELD_LABELS = {
    "eventName": "Event name",
    "locationName": "Location",
    "phase": "Phase",
    "startDate": "Start date",
    "endDate": "End date",
}


# ---------------------------------------------------------------------------
# Preview types
# ---------------------------------------------------------------------------

@dataclass
class PreviewRow:
    index: int
    raw: dict[str, Any]
    interpreted: EventImportRow | None = None
    errors: list[ValidationSignal] = field(default_factory=list)
    warnings: list[ValidationSignal] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "index": self.index,
            "raw": self.raw,
            "errors": [s.to_dict() for s in self.errors],
            "warnings": [s.to_dict() for s in self.warnings],
        }
        if self.interpreted is not None:
            out["interpreted"] = self.interpreted.to_dict()
        return out


@dataclass
class PreviewSummary:
    total_rows: int = 0
    rows_with_errors: int = 0
    rows_with_warnings: int = 0
    events_detected: int = 0
    locations_detected: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalRows": self.total_rows,
            "rowsWithErrors": self.rows_with_errors,
            "rowsWithWarnings": self.rows_with_warnings,
            "eventsDetected": self.events_detected,
            "locationsDetected": self.locations_detected,
        }


@dataclass
class ImportPreview:
    rows: list[PreviewRow] = field(default_factory=list)
    summary: PreviewSummary = field(default_factory=PreviewSummary)
    global_signals: list[ValidationSignal] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [r.to_dict() for r in self.rows],
            "summary": self.summary.to_dict(),
            "globalSignals": [s.to_dict() for s in self.global_signals],
        }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def interpret_import_rows(raw_rows: list[Any]) -> ImportPreview:
    """Interpret every raw row and compute row-level and cross-row signals."""
    preview = ImportPreview()
    for index, raw in enumerate(raw_rows):
        preview.rows.append(interpret_row(index, raw))

    _flag_duplicate_rows(preview.rows)
    preview.global_signals.extend(event_level_signals(preview.rows))

    clean = [r.interpreted for r in preview.rows if r.interpreted is not None]
    preview.summary = PreviewSummary(
        total_rows=len(preview.rows),
        rows_with_errors=sum(1 for r in preview.rows if r.errors),
        rows_with_warnings=sum(1 for r in preview.rows if r.warnings),
        events_detected=len({row.event_name for row in clean}),
        locations_detected=len({row.location_name for row in clean}),
    )
    return preview


# ---------------------------------------------------------------------------
# Row interpretation
# ---------------------------------------------------------------------------

def _error(signal_type: str, message: str, index: int, **context: Any) -> ValidationSignal:
    return ValidationSignal(
        type=signal_type,
        severity=SEVERITY_ERROR,
        message=message,
        row_numbers=[index],
        context=context,
    )


def interpret_row(index: int, raw: Any) -> PreviewRow:
    """Annotate one raw row with its errors; attach the canonical row if clean."""
    if not isinstance(raw, Mapping):
        row = PreviewRow(index=index, raw={})
        row.errors.append(
            _error(SIGNAL_INVALID_ROW, "Row must be an object", index,
                   received=type(raw).__name__)
        )
        return row

    row = PreviewRow(index=index, raw=dict(raw))
    values = {column: cell_text(raw.get(column)) for column in _FIELD_LABELS}

    for column, label in _FIELD_LABELS.items():
        if not values[column]:
            row.errors.append(
                _error(SIGNAL_EMPTY_REQUIRED_FIELD, f"{label} is required", index,
                       field=column)
            )

    phase = values["phase"]
    if phase and phase not in PHASE_TYPES:
        row.errors.append(
            _error(
                SIGNAL_UNKNOWN_PHASE,
                f'Unknown phase: "{phase}". Must be one of: {", ".join(PHASE_TYPES)}',
                index,
                phase=phase,
                allowed=list(PHASE_TYPES),
            )
        )

    dates: dict[str, date | None] = {}
    for column, label in (("startDate", "start date"), ("endDate", "end date")):
        text = values[column]
        dates[column] = parse_iso_date(text) if text else None
        if text and dates[column] is None:
            row.errors.append(
                _error(
                    SIGNAL_INVALID_DATE_FORMAT,
                    f'Invalid {label} format: "{text}". Expected YYYY-MM-DD',
                    index,
                    date=text,
                    field=column,
                )
            )

    start_date, end_date = dates["startDate"], dates["endDate"]
    if start_date and end_date and end_date < start_date:
        row.errors.append(
            _error(
                SIGNAL_END_BEFORE_START,
                f"End date ({values['endDate']}) is before start date ({values['startDate']})",
                index,
                startDate=values["startDate"],
                endDate=values["endDate"],
            )
        )

    if not row.errors:
        row.interpreted = EventImportRow(
            event_name=values["eventName"],
            location_name=values["locationName"],
            phase=phase,
            start_date=start_date,  # type: ignore[arg-type]
            end_date=end_date,  # type: ignore[arg-type]
        )
    return row


def duplicate_row_signals(rows: list[IndexedRow]) -> list[ValidationSignal]:
    """One DUPLICATE_ROW warning per row identical to an earlier one."""
    first_seen: dict[EventImportRow, int] = {}
    signals: list[ValidationSignal] = []
    for index, row in rows:
        original = first_seen.setdefault(row, index)
        if original != index:
            signals.append(
                ValidationSignal(
                    type=SIGNAL_DUPLICATE_ROW,
                    severity=SEVERITY_WARNING,
                    message=f"Row duplicates row {original}",
                    row_numbers=[index],
                    context={"duplicateOf": original},
                )
            )
    return signals


def _flag_duplicate_rows(rows: list[PreviewRow]) -> None:
    by_index = {row.index: row for row in rows}
    for signal in duplicate_row_signals(_clean_rows(rows)):
        by_index[signal.row_numbers[0]].warnings.append(signal)


def _clean_rows(rows: list[PreviewRow]) -> list[IndexedRow]:
    return [(row.index, row.interpreted) for row in rows if row.interpreted is not None]


# ---------------------------------------------------------------------------
# Cross-row signals
# ---------------------------------------------------------------------------

def event_level_signals(rows: list[PreviewRow]) -> list[ValidationSignal]:
    """Advisory warnings computed over error-free preview rows."""
    return row_set_signals(_clean_rows(rows))


def row_set_signals(rows: list[IndexedRow]) -> list[ValidationSignal]:
    """Event-level then location-level warnings for (index, row) pairs.

    Never blocks anything: callers attach these to a preview or return
    them next to the counters of an import that went ahead.
    """
    return _event_signals(rows) + _location_overlap_signals(rows)


def _event_signals(rows: list[IndexedRow]) -> list[ValidationSignal]:
    groups: dict[str, list[IndexedRow]] = defaultdict(list)
    for index, row in rows:
        groups[row.event_name].append((index, row))

    signals: list[ValidationSignal] = []
    for event_name, event_rows in groups.items():
        primary = [(index, row) for index, row in event_rows if row.is_primary]
        if not primary:
            signals.append(
                ValidationSignal(
                    type=SIGNAL_NO_EVENT_PHASE,
                    severity=SEVERITY_WARNING,
                    message=f'Event "{event_name}" has no {PRIMARY_PHASE} phase, only other phases',
                    row_numbers=[index for index, _ in event_rows],
                    context={"eventName": event_name},
                )
            )
            continue

        spans = {(row.start_date, row.end_date) for _, row in primary}
        if len(spans) > 1:
            signals.append(
                ValidationSignal(
                    type=SIGNAL_INCONSISTENT_EVENT_DATES,
                    severity=SEVERITY_WARNING,
                    message=f'Event "{event_name}" has inconsistent {PRIMARY_PHASE} dates across rows',
                    row_numbers=[index for index, _ in primary],
                    context={"eventName": event_name},
                )
            )

        event_start = min(row.start_date for _, row in primary)
        event_end = max(row.end_date for _, row in primary)
        outside = [
            index
            for index, row in event_rows
            if not row.is_primary and (row.start_date < event_start or row.end_date > event_end)
        ]
        if outside:
            signals.append(
                ValidationSignal(
                    type=SIGNAL_PHASE_OUTSIDE_EVENT_RANGE,
                    severity=SEVERITY_WARNING,
                    message=(
                        f'Event "{event_name}" has phases outside its {PRIMARY_PHASE} range '
                        f"({event_start.isoformat()} to {event_end.isoformat()})"
                    ),
                    row_numbers=outside,
                    context={
                        "eventName": event_name,
                        "eventStart": event_start.isoformat(),
                        "eventEnd": event_end.isoformat(),
                    },
                )
            )
    return signals


def _location_overlap_signals(rows: list[IndexedRow]) -> list[ValidationSignal]:
    """Flag rows whose span overlaps an earlier row at the same location.

    Each later row is flagged at most once, against the first earlier row
    it overlaps.  Inclusive dates: 06-05 and 06-05 overlap, 06-05 and 06-06
    do not.
    """
    groups: dict[str, list[IndexedRow]] = defaultdict(list)
    for index, row in rows:
        groups[row.location_name].append((index, row))

    signals: list[ValidationSignal] = []
    for location_name, location_rows in groups.items():
        ordered = sorted(location_rows, key=lambda pair: pair[0])
        flagged: list[int] = []
        for pos, (_, current) in enumerate(ordered):
            for index, candidate in ordered[pos + 1:]:
                if index in flagged:
                    continue
                if current.start_date <= candidate.end_date and candidate.start_date <= current.end_date:
                    flagged.append(index)
                    break
        if flagged:
            signals.append(
                ValidationSignal(
                    type=SIGNAL_OVERLAPPING_LOCATION_SPAN,
                    severity=SEVERITY_WARNING,
                    message=f'Location "{location_name}" has overlapping spans',
                    row_numbers=sorted(flagged),
                    context={"locationName": location_name},
                )
            )
    return signals
