"""planning_etl.parse_xlsx

Workbook parsers for the dedicated spreadsheet pathway (openpyxl).

Sheet selection: among all worksheets, exactly one must carry every
required header in its first non-empty row (headers compared
case/whitespace-insensitively).  Zero or several candidates is a hard
failure naming the sheets.

Row handling is fail-fast: the first bad row raises XlsxParseError with
its 0-based data-row index and column.  Fully empty rows are dropped
before indexing; rows whose required cells are all empty are skipped.

Event workbook layout is wide: one row per (event, location) with a
start/end column pair per phase.  A phase whose two cells are empty is
omitted; one without the other fails the row.
"""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass
from datetime import date
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from planning_etl.import_contract import EventImportRow
from planning_etl.normalize import (
    cell_date,
    cell_text,
    is_blank,
    normalize_header,
    parse_iso_date,
    parse_numeric,
)
from planning_etl.work_categories import WorkCategoryImportRow

log = logging.getLogger(__name__)

# OLE2 compound document signature used by legacy .xls files.
LEGACY_XLS_SIGNATURE = b"\xd0\xcf\x11\xe0"

EVENT_PHASE_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("ASSEMBLY", "Assembly start date", "Assembly end date"),
    ("MOVE_IN", "Moving in start date", "Moving in end date"),
    ("EVENT", "Event start date", "Event end date"),
    ("MOVE_OUT", "Moving out start date", "Moving out end date"),
    ("DISMANTLE", "Dismantle start date", "Dismantle end date"),
)

EVENT_REQUIRED_HEADERS: tuple[str, ...] = (
    "Locations",
    "Event name",
    *(header for _, start, end in EVENT_PHASE_COLUMNS for header in (start, end)),
    "Status",
)

WORK_CATEGORY_REQUIRED_HEADERS: tuple[str, ...] = (
    "Event name",
    "Phase",
    "Work category",
    "Estimated effort hours",
)


class XlsxParseError(ValueError):
    """Workbook layout problem, or the first invalid data row."""

    def __init__(
        self,
        message: str,
        row_index: int | None = None,
        column_name: str | None = None,
    ) -> None:
        if row_index is not None:
            text = f"Row {row_index} - {column_name}: {message}"
        else:
            text = message
        super().__init__(text)
        self.row_index = row_index
        self.column_name = column_name


# ---------------------------------------------------------------------------
# Sheet selection
# ---------------------------------------------------------------------------

@dataclass
class _Sheet:
    name: str
    header_index: dict[str, int]
    rows: list[tuple[Any, ...]]

    def cell(self, row: tuple[Any, ...], header: str) -> Any:
        idx = self.header_index[normalize_header(header)]
        return row[idx] if idx < len(row) else None


def is_legacy_xls(data: bytes) -> bool:
    return data[:4] == LEGACY_XLS_SIGNATURE


def _read_sheets(data: bytes) -> list[tuple[str, list[tuple[Any, ...]]]]:
    if is_legacy_xls(data):
        raise XlsxParseError(
            "Legacy .xls workbooks are not supported. Save the file as .xlsx and retry."
        )
    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError) as exc:
        raise XlsxParseError(f"File is not a readable .xlsx workbook: {exc}") from exc
    try:
        sheets = []
        for ws in wb.worksheets:
            rows = [
                tuple(row)
                for row in ws.iter_rows(values_only=True)
                if not all(is_blank(v) for v in row)
            ]
            sheets.append((ws.title, rows))
        return sheets
    finally:
        wb.close()


def select_sheet(data: bytes, required_headers: tuple[str, ...]) -> _Sheet:
    """Return the single worksheet whose header row has every required header."""
    wanted = [normalize_header(h) for h in required_headers]
    candidates: list[_Sheet] = []
    for name, rows in _read_sheets(data):
        if not rows:
            continue
        header_index: dict[str, int] = {}
        for idx, value in enumerate(rows[0]):
            key = normalize_header(value)
            if key and key not in header_index:
                header_index[key] = idx
        if all(h in header_index for h in wanted):
            candidates.append(_Sheet(name=name, header_index=header_index, rows=rows[1:]))

    if not candidates:
        raise XlsxParseError("No worksheet contains the required headers for import.")
    if len(candidates) > 1:
        names = ", ".join(c.name for c in candidates)
        raise XlsxParseError(
            f"Multiple worksheets contain required headers. Unable to choose between: {names}."
        )
    log.debug("Selected worksheet %r (%d data rows)", candidates[0].name, len(candidates[0].rows))
    return candidates[0]


# ---------------------------------------------------------------------------
# Cell readers (fail fast)
# ---------------------------------------------------------------------------

def _require_text(value: Any, row_index: int, column: str) -> str:
    text = cell_text(value)
    if not text:
        raise XlsxParseError("Missing value", row_index, column)
    return text


def _date_cell(value: Any, row_index: int, column: str) -> date | None:
    if is_blank(value):
        return None
    if isinstance(value, str):
        text = value.strip()
        parsed = parse_iso_date(text)
        if parsed is None:
            raise XlsxParseError(f"Invalid date: {text}. Must be YYYY-MM-DD", row_index, column)
        return parsed
    parsed = cell_date(value)
    if parsed is None:
        raise XlsxParseError("Date must be a YYYY-MM-DD string or a date cell", row_index, column)
    return parsed


# ---------------------------------------------------------------------------
# Event workbook
# ---------------------------------------------------------------------------

def parse_event_xlsx(data: bytes) -> list[EventImportRow]:
    """Parse a wide-layout event workbook into canonical rows."""
    sheet = select_sheet(data, EVENT_REQUIRED_HEADERS)
    results: list[EventImportRow] = []

    for row_index, row in enumerate(sheet.rows):
        if all(is_blank(sheet.cell(row, h)) for h in EVENT_REQUIRED_HEADERS):
            continue

        event_name = _require_text(sheet.cell(row, "Event name"), row_index, "Event name")
        location_name = _require_text(sheet.cell(row, "Locations"), row_index, "Locations")

        for phase, start_header, end_header in EVENT_PHASE_COLUMNS:
            start = _date_cell(sheet.cell(row, start_header), row_index, start_header)
            end = _date_cell(sheet.cell(row, end_header), row_index, end_header)
            if start is None and end is None:
                continue
            if end is None:
                raise XlsxParseError("Missing end date", row_index, end_header)
            if start is None:
                raise XlsxParseError("Missing start date", row_index, start_header)
            if end < start:
                raise XlsxParseError(
                    f"End date {end.isoformat()} is before start date {start.isoformat()}",
                    row_index,
                    end_header,
                )
            results.append(
                EventImportRow(
                    event_name=event_name,
                    location_name=location_name,
                    phase=phase,
                    start_date=start,
                    end_date=end,
                )
            )

    log.info("Parsed %d phase row(s) from worksheet %r", len(results), sheet.name)
    return results


# ---------------------------------------------------------------------------
# Work-category workbook
# ---------------------------------------------------------------------------

def parse_work_category_xlsx(data: bytes) -> list[WorkCategoryImportRow]:
    sheet = select_sheet(data, WORK_CATEGORY_REQUIRED_HEADERS)
    results: list[WorkCategoryImportRow] = []

    for row_index, row in enumerate(sheet.rows):
        if all(is_blank(sheet.cell(row, h)) for h in WORK_CATEGORY_REQUIRED_HEADERS):
            continue

        event_name = _require_text(sheet.cell(row, "Event name"), row_index, "Event name")
        phase = _require_text(sheet.cell(row, "Phase"), row_index, "Phase").upper()
        name = _require_text(sheet.cell(row, "Work category"), row_index, "Work category")

        raw_hours = sheet.cell(row, "Estimated effort hours")
        if is_blank(raw_hours):
            raise XlsxParseError("Missing value", row_index, "Estimated effort hours")
        hours = parse_numeric(raw_hours)
        if hours is None:
            raise XlsxParseError(
                f"Invalid number: {cell_text(raw_hours)}", row_index, "Estimated effort hours"
            )
        if hours < 0:
            raise XlsxParseError("Must be >= 0", row_index, "Estimated effort hours")

        results.append(
            WorkCategoryImportRow(
                event_name=event_name,
                phase=phase,
                work_category_name=name,
                estimated_effort_hours=hours,
            )
        )

    log.info("Parsed %d work category row(s) from worksheet %r", len(results), sheet.name)
    return results
