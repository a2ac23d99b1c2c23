"""planning_etl.import_requests

Transport-agnostic import entry points.

Each function takes what an HTTP handler (or any other caller) received
and returns an ImportResponse(status, body):

  preview_request                 CSV / JSON / upload → preview, always 200
                                  unless the request itself is malformed
  execute_request                 {"rows": [...]} → merge (or replace) → counters
  import_file_request             CSV / JSON / upload → strict parse → replace
                                  → counters + advisory "warnings"
  import_xlsx_request             event workbook bytes → reconcile → counters
  import_work_categories_request  {"rows": [...]} → dependent import → counters

Status mapping:
  400  ImportRequestError (incl. MissingEventsError), XlsxParseError
  500  anything else, carrying str(exc) when there is one
"""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from planning_etl.import_interpreter import (
    duplicate_row_signals,
    interpret_import_rows,
    row_set_signals,
)
from planning_etl.parse_event_import import (
    RowError,
    parse_event_import,
    parse_json_rows,
    read_csv_records,
)
from planning_etl.parse_xlsx import XlsxParseError, is_legacy_xls, parse_event_xlsx
from planning_etl.reconcile import MODE_MERGE, MODE_REPLACE, reconcile_rows
from planning_etl.shared import ImportRequestError
from planning_etl.store import EventStore
from planning_etl.work_categories import (
    reconcile_work_categories,
    work_category_rows_from_payload,
)

log = logging.getLogger(__name__)

EXCEL_CONTENT_TYPES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
)
EXCEL_EXTENSIONS = (".xlsx", ".xls")

EXCEL_NOT_SUPPORTED = (
    "Excel files (.xlsx, .xls) are not supported. Please upload CSV or JSON files."
)
UNSUPPORTED_CONTENT_TYPE = (
    "Unsupported content type. Please send CSV (text/csv) or JSON (application/json)"
)


class InvalidRowsError(ImportRequestError):
    """Strict pathways: at least one row failed validation."""

    def __init__(self, errors: list[RowError]) -> None:
        summary = "; ".join(f"Row {e.row_index}: {e.message}" for e in errors[:5])
        if len(errors) > 5:
            summary += f"; and {len(errors) - 5} more"
        super().__init__(f"Import contains invalid rows: {summary}")
        self.errors = errors


@dataclass
class ImportResponse:
    status: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status < 400


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes


# ---------------------------------------------------------------------------
# Status mapping
# ---------------------------------------------------------------------------

def _respond(action: str, handler: Callable[[], dict[str, Any]]) -> ImportResponse:
    try:
        return ImportResponse(200, handler())
    except (ImportRequestError, XlsxParseError) as exc:
        log.warning("%s rejected: %s", action, exc)
        body: dict[str, Any] = {"error": str(exc)}
        if isinstance(exc, InvalidRowsError):
            body["errors"] = [e.to_dict() for e in exc.errors]
        return ImportResponse(400, body)
    except Exception as exc:
        log.exception("%s failed", action)
        return ImportResponse(500, {"error": str(exc) or f"Unknown error during {action}"})


# ---------------------------------------------------------------------------
# Body decoding
# ---------------------------------------------------------------------------

def _text(body: bytes | str) -> str:
    if isinstance(body, bytes):
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ImportRequestError("Request body is not valid UTF-8 text") from exc
    return body


def _is_excel_type(content_type: str) -> bool:
    return any(t in content_type for t in EXCEL_CONTENT_TYPES)


def _declared_format(
    content_type: str, body: bytes | str, upload: UploadedFile | None
) -> tuple[str, str]:
    """Resolve (format, text) for a CSV/JSON request.  Spreadsheets are refused."""
    content_type = (content_type or "").lower()
    if _is_excel_type(content_type):
        raise ImportRequestError(EXCEL_NOT_SUPPORTED)

    if "multipart/form-data" in content_type:
        if upload is None:
            raise ImportRequestError("No file provided")
        filename = upload.filename.lower()
        if filename.endswith(EXCEL_EXTENSIONS) or is_legacy_xls(upload.content):
            raise ImportRequestError(EXCEL_NOT_SUPPORTED)
        fmt = "json" if filename.endswith(".json") else "csv"
        return fmt, _text(upload.content)

    if "text/csv" in content_type or "text/plain" in content_type:
        return "csv", _text(body)
    if "application/json" in content_type:
        return "json", _text(body)
    raise ImportRequestError(UNSUPPORTED_CONTENT_TYPE)


def _require_rows(payload: Any) -> list[Any]:
    rows = payload.get("rows") if isinstance(payload, Mapping) else None
    if not isinstance(rows, list):
        raise ImportRequestError("Request body must contain 'rows' array")
    if not rows:
        raise ImportRequestError("Cannot import empty rows array")
    return rows


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def preview_request(
    content_type: str, body: bytes | str = b"", upload: UploadedFile | None = None
) -> ImportResponse:
    """Interpret raw rows without persisting anything."""

    def handler() -> dict[str, Any]:
        fmt, text = _declared_format(content_type, body, upload)
        if fmt == "json":
            try:
                raw_rows = json.loads(text)
            except ValueError as exc:
                raise ImportRequestError(f"Invalid JSON: {exc}") from exc
            if not isinstance(raw_rows, list):
                raise ImportRequestError("JSON must be an array of objects")
        else:
            try:
                _, raw_rows = read_csv_records(text)
            except csv.Error as exc:
                raise ImportRequestError(f"CSV parse error: {exc}") from exc
        return interpret_import_rows(raw_rows).to_dict()

    return _respond("import preview", handler)


def execute_request(store: EventStore, payload: Any, mode: str = MODE_MERGE) -> ImportResponse:
    """Reconcile already-structured rows ({"rows": [...]})."""

    def handler() -> dict[str, Any]:
        parsed = parse_json_rows(_require_rows(payload))
        if parsed.errors:
            raise InvalidRowsError(parsed.errors)
        return reconcile_rows(store, parsed.rows, mode=mode).to_dict()

    return _respond("event import", handler)


def import_file_request(
    store: EventStore,
    content_type: str,
    body: bytes | str = b"",
    upload: UploadedFile | None = None,
) -> ImportResponse:
    """Strictly parse a raw CSV/JSON file and apply it with full replace."""

    def handler() -> dict[str, Any]:
        fmt, text = _declared_format(content_type, body, upload)
        parsed = parse_event_import(text, fmt)
        if parsed.errors:
            raise InvalidRowsError(parsed.errors)
        if not parsed.rows:
            raise ImportRequestError("Cannot import empty rows array")
        indexed = list(enumerate(parsed.rows))
        warnings = duplicate_row_signals(indexed) + row_set_signals(indexed)
        if warnings:
            log.info("event file import: %d advisory warning(s)", len(warnings))
        result = reconcile_rows(store, parsed.rows, mode=MODE_REPLACE).to_dict()
        result["warnings"] = [w.to_dict() for w in warnings]
        return result

    return _respond("event file import", handler)


def import_xlsx_request(store: EventStore, data: bytes, mode: str = MODE_MERGE) -> ImportResponse:
    def handler() -> dict[str, Any]:
        rows = parse_event_xlsx(data)
        if not rows:
            raise ImportRequestError("Workbook contains no event rows")
        return reconcile_rows(store, rows, mode=mode).to_dict()

    return _respond("event workbook import", handler)


def import_work_categories_request(store: EventStore, payload: Any) -> ImportResponse:
    def handler() -> dict[str, Any]:
        rows = work_category_rows_from_payload(_require_rows(payload))
        return reconcile_work_categories(store, rows).to_dict()

    return _respond("work category import", handler)
