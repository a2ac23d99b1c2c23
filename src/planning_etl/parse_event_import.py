"""planning_etl.parse_event_import

Pure, deterministic parser that converts CSV or JSON input into
EventImportRow lists.  No side effects, no inference: a row either becomes
a canonical row or is reported with a per-row error and left out.

Usage:
    from planning_etl.parse_event_import import parse_event_import

    result = parse_event_import(text, "csv")
    result.rows    # [EventImportRow, ...]  (input order preserved)
    result.errors  # [RowError(row_index=2, message="..."), ...]
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from planning_etl.import_contract import (
    PHASE_TYPES,
    REQUIRED_COLUMNS,
    EventImportRow,
)
from planning_etl.normalize import cell_text, is_iso_date_text, parse_iso_date

SUPPORTED_FORMATS = ("csv", "json")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RowError:
    row_index: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"rowIndex": self.row_index, "message": self.message}


@dataclass
class ParsedImportResult:
    rows: list[EventImportRow] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [row.to_dict() for row in self.rows],
            "errors": [err.to_dict() for err in self.errors],
        }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def parse_event_import(text: str, fmt: str) -> ParsedImportResult:
    """Parse raw file text in an explicitly declared format ("csv" | "json")."""
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f"unsupported import format: {fmt!r}")
    if fmt == "csv":
        return parse_csv_text(text)
    return parse_json_text(text)


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

def read_csv_records(text: str) -> tuple[list[str], list[dict[str, str]]]:
    """Split CSV text into (header, records).

    - First non-blank line is the header; header names are trimmed.
    - Lines whose cells are all blank are skipped.
    - Every cell is trimmed; cells missing from a short line read as ''.
    - Columns with a blank header name are dropped.

    Raises csv.Error for malformed quoting (strict mode).
    """
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff"), newline=""), strict=True)
    header: list[str] = []
    records: list[dict[str, str]] = []
    for cells in reader:
        trimmed = [cell.strip() for cell in cells]
        if all(cell == "" for cell in trimmed):
            continue
        if not header:
            header = trimmed
            continue
        record: dict[str, str] = {}
        for idx, name in enumerate(header):
            if not name:
                continue
            record[name] = trimmed[idx] if idx < len(trimmed) else ""
        records.append(record)
    return header, records


def parse_csv_text(text: str) -> ParsedImportResult:
    result = ParsedImportResult()
    try:
        header, records = read_csv_records(text)
    except csv.Error as exc:
        result.errors.append(RowError(0, f"CSV parse error: {exc}"))
        return result

    if not header:
        result.errors.append(RowError(0, "CSV input is empty"))
        return result

    missing = [col for col in REQUIRED_COLUMNS if col not in header]
    if missing:
        result.errors.append(
            RowError(0, f"CSV is missing required column(s): {', '.join(missing)}")
        )
        return result

    _collect(records, result)
    return result


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def parse_json_text(text: str) -> ParsedImportResult:
    """Accepts a bare array of rows or an object wrapping it as {"rows": [...]}."""
    try:
        data = json.loads(text)
    except ValueError as exc:
        return ParsedImportResult(errors=[RowError(0, f"JSON parse error: {exc}")])
    if isinstance(data, Mapping) and isinstance(data.get("rows"), list):
        data = data["rows"]
    return parse_json_rows(data)


def parse_json_rows(data: Any) -> ParsedImportResult:
    """Validate an already-decoded JSON value that should be a list of rows."""
    if not isinstance(data, list):
        return ParsedImportResult(
            errors=[RowError(0, "JSON input must be an array of EventImportRow objects")]
        )
    result = ParsedImportResult()
    _collect(data, result)
    return result


# ---------------------------------------------------------------------------
# Row validation
# ---------------------------------------------------------------------------

def _collect(raw_rows: list[Any], result: ParsedImportResult) -> None:
    for index, raw in enumerate(raw_rows):
        row, error = validate_row(raw, index)
        if row is not None:
            result.rows.append(row)
        elif error is not None:
            result.errors.append(error)


def validate_row(raw: Any, row_index: int) -> tuple[EventImportRow | None, RowError | None]:
    """Validate one raw row; return (row, None) or (None, error).

    Checks, first failure wins:
      - row is an object
      - every required field present and non-empty after trimming
      - phase is one of PHASE_TYPES (case-sensitive)
      - startDate / endDate are literal YYYY-MM-DD naming real days
      - endDate is not before startDate
    """
    if not isinstance(raw, Mapping):
        return None, RowError(row_index, "Row must be an object")

    for column in REQUIRED_COLUMNS:
        if raw.get(column) is None:
            return None, RowError(row_index, f"Missing required field: {column}")

    values = {column: cell_text(raw[column]) for column in REQUIRED_COLUMNS}

    for column in REQUIRED_COLUMNS:
        if values[column] == "":
            return None, RowError(row_index, f"{column} cannot be empty")

    phase = values["phase"]
    if phase not in PHASE_TYPES:
        return None, RowError(
            row_index,
            f'Unknown phase: "{phase}". Must be one of: {", ".join(PHASE_TYPES)}',
        )

    for column in ("startDate", "endDate"):
        if not is_iso_date_text(values[column]):
            return None, RowError(
                row_index,
                f'Invalid {column} format: "{values[column]}". Must be YYYY-MM-DD',
            )

    start_date = parse_iso_date(values["startDate"])
    if start_date is None:
        return None, RowError(
            row_index, f'startDate is not a valid date: "{values["startDate"]}"'
        )
    end_date = parse_iso_date(values["endDate"])
    if end_date is None:
        return None, RowError(
            row_index, f'endDate is not a valid date: "{values["endDate"]}"'
        )

    if end_date < start_date:
        return None, RowError(
            row_index,
            f'End date "{values["endDate"]}" is before start date "{values["startDate"]}"',
        )

    return (
        EventImportRow(
            event_name=values["eventName"],
            location_name=values["locationName"],
            phase=phase,
            start_date=start_date,
            end_date=end_date,
        ),
        None,
    )
