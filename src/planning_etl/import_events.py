"""planning_etl.import_events

Unified CLI entrypoint for event-planning imports.

Modes (--mode):
  preview          interpret a CSV/JSON file and print the preview; no DB
  merge            parse, reject bad rows, reconcile additively (default)
  replace          parse, reject bad rows, reconcile with full replace
  xlsx             parse an event workbook (fail fast) and reconcile
  work_categories  parse a work-category workbook and import it
  purge            delete all imported planning data (CONFIRM_PURGE=true)

Usage (merge):
    python -m planning_etl.import_events \\
        --mode merge \\
        --db-dsn "$DB_DSN" \\
        --input-path "data/events_2024.csv"

Usage (xlsx, dry run):
    python -m planning_etl.import_events \\
        --mode xlsx \\
        --input-path "data/planning.xlsx" \\
        --settings-path config/import_settings.yml \\
        --dry-run
"""

from __future__ import annotations

import csv
import json
import logging
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, NoReturn, TypeVar

import click
import psycopg

from planning_etl.import_contract import REQUIRED_COLUMNS
from planning_etl.import_requests import preview_request
from planning_etl.parse_event_import import parse_json_rows, read_csv_records
from planning_etl.parse_xlsx import (
    XlsxParseError,
    parse_event_xlsx,
    parse_work_category_xlsx,
)
from planning_etl.reconcile import MODE_MERGE, MODE_REPLACE, STRATEGIES, reconcile_rows
from planning_etl.settings import ImportSettings, ImportSettingsError, resolve_settings
from planning_etl.shared import MissingEventsError, RejectWriter, write_run_report
from planning_etl.store import PostgresEventStore, describe_dsn, purge_import_data
from planning_etl.work_categories import reconcile_work_categories

log = logging.getLogger(__name__)

T = TypeVar("T")

MODES = ["preview", "merge", "replace", "xlsx", "work_categories", "purge"]

CONTENT_TYPES = {"csv": "text/csv", "json": "application/json"}

REJECT_FIELDS = ["row_index", *REQUIRED_COLUMNS]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fatal(run_id: str, message: str) -> NoReturn:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _require_input(input_path: str | None, run_id: str, mode: str) -> Path:
    if not input_path:
        _fatal(run_id, f"--input-path is required for mode {mode}")
    path = Path(input_path)
    if not path.is_file():
        _fatal(run_id, f"input file not found: {path}")
    return path


def _require_dsn(db_dsn: str | None, run_id: str) -> str:
    if not db_dsn:
        _fatal(run_id, "--db-dsn (or DB_DSN) is required for this mode")
    return db_dsn


def _infer_format(path: Path, fmt: str | None, run_id: str) -> str:
    if fmt:
        return fmt
    suffix = path.suffix.lower().lstrip(".")
    if suffix in CONTENT_TYPES:
        return suffix
    _fatal(run_id, f"cannot infer format from {path.name!r}; pass --format csv|json")


def _load_records(path: Path, fmt: str, run_id: str) -> list[Any]:
    """Read raw records, exiting on structural problems (bad JSON, missing columns)."""
    text = path.read_text(encoding="utf-8-sig")
    if fmt == "json":
        try:
            data = json.loads(text)
        except ValueError as exc:
            _fatal(run_id, f"JSON parse error: {exc}")
        if not isinstance(data, list):
            _fatal(run_id, "JSON input must be an array of row objects")
        return data

    try:
        header, records = read_csv_records(text)
    except csv.Error as exc:
        _fatal(run_id, f"CSV parse error: {exc}")
    missing = [col for col in REQUIRED_COLUMNS if col not in header]
    if missing:
        _fatal(run_id, f"missing headers after trim: {missing}")
    return records


def _with_store(
    db_dsn: str, dry_run: bool, run_id: str, action: Callable[[PostgresEventStore], T]
) -> T:
    """Run action against a PostgresEventStore.

    The connection is autocommit, so merge writes are independent statements
    and replace opens its own transaction.  A dry run wraps everything in one
    outer transaction that is always rolled back.
    """
    conn = psycopg.connect(db_dsn, autocommit=True)
    try:
        store = PostgresEventStore(conn)
        if not dry_run:
            return action(store)
        with conn.transaction(force_rollback=True):
            result = action(store)
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        return result
    finally:
        conn.close()


def _check_reject_rate(
    run_id: str, rows_read: int, rows_rejected: int, max_reject_rate: float
) -> None:
    if rows_read == 0:
        return
    reject_rate = rows_rejected / rows_read
    if reject_rate > max_reject_rate:
        _fatal(
            run_id,
            f"reject rate {reject_rate:.2%} exceeds threshold {max_reject_rate:.2%}",
        )


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_preview(path: Path, fmt: str, run_id: str) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8-sig")
    response = preview_request(CONTENT_TYPES[fmt], text)
    if not response.ok:
        _fatal(run_id, response.body["error"])
    click.echo(json.dumps(response.body, indent=2, default=str))
    return response.body["summary"]


def _run_rows(
    path: Path,
    fmt: str,
    db_dsn: str,
    reconcile_mode: str,
    settings: ImportSettings,
    run_id: str,
    dry_run: bool,
) -> dict[str, Any]:
    records = _load_records(path, fmt, run_id)
    parsed = parse_json_rows(records)

    rejects = RejectWriter(settings.rejects_path, fieldnames=REJECT_FIELDS)
    try:
        for error in parsed.errors:
            raw = records[error.row_index] if error.row_index < len(records) else None
            row = {"row_index": error.row_index}
            if isinstance(raw, dict):
                row.update(raw)
            rejects.write(row, error.message)
    finally:
        rejects.close()

    click.echo(
        f"[{run_id}] Pre-scan: {len(records)} rows read, "
        f"{len(parsed.errors)} rejected, {len(parsed.rows)} valid"
    )
    if parsed.errors:
        click.echo(f"[{run_id}] Rejects: {settings.rejects_path}")
    _check_reject_rate(run_id, len(records), len(parsed.errors), settings.max_reject_rate)
    if not parsed.rows:
        _fatal(run_id, "no valid rows to import")

    try:
        counters = _with_store(
            db_dsn, dry_run, run_id,
            lambda store: reconcile_rows(store, parsed.rows, mode=reconcile_mode),
        )
    except Exception as exc:
        log.exception("reconciliation failed")
        _fatal(run_id, f"reconciliation failed: {exc}")

    click.echo(json.dumps(counters.to_dict(), indent=2))
    return {
        "rows_read": len(records),
        "rows_rejected": len(parsed.errors),
        **counters.to_report_dict(),
    }


def _run_xlsx(
    path: Path,
    db_dsn: str,
    reconcile_mode: str,
    run_id: str,
    dry_run: bool,
) -> dict[str, Any]:
    try:
        rows = parse_event_xlsx(path.read_bytes())
    except XlsxParseError as exc:
        _fatal(run_id, str(exc))
    if not rows:
        _fatal(run_id, "workbook contains no event rows")
    click.echo(f"[{run_id}] Workbook: {len(rows)} phase rows")

    try:
        counters = _with_store(
            db_dsn, dry_run, run_id,
            lambda store: reconcile_rows(store, rows, mode=reconcile_mode),
        )
    except Exception as exc:
        log.exception("reconciliation failed")
        _fatal(run_id, f"reconciliation failed: {exc}")

    click.echo(json.dumps(counters.to_dict(), indent=2))
    return {"rows_read": len(rows), **counters.to_report_dict()}


def _run_work_categories(
    path: Path, db_dsn: str, run_id: str, dry_run: bool
) -> dict[str, Any]:
    try:
        rows = parse_work_category_xlsx(path.read_bytes())
    except XlsxParseError as exc:
        _fatal(run_id, str(exc))
    if not rows:
        _fatal(run_id, "workbook contains no work category rows")
    click.echo(f"[{run_id}] Workbook: {len(rows)} work category rows")

    try:
        counters = _with_store(
            db_dsn, dry_run, run_id,
            lambda store: reconcile_work_categories(store, rows),
        )
    except MissingEventsError as exc:
        _fatal(run_id, str(exc))
    except Exception as exc:
        log.exception("work category import failed")
        _fatal(run_id, f"work category import failed: {exc}")

    click.echo(json.dumps(counters.to_dict(), indent=2))
    return {"rows_read": len(rows), **counters.to_dict()}


def _run_purge(db_dsn: str, run_id: str, dry_run: bool) -> dict[str, Any]:
    if os.environ.get("CONFIRM_PURGE") != "true":
        _fatal(run_id, "refusing to purge; set CONFIRM_PURGE=true to proceed")
    click.echo(f"[{run_id}] Purge target: {describe_dsn(db_dsn)}")

    try:
        counts = _with_store(
            db_dsn, dry_run, run_id, lambda store: purge_import_data(store.conn)
        )
    except psycopg.Error as exc:
        _fatal(run_id, f"purge failed: {exc}")

    for table, deleted in counts.items():
        click.echo(f"[{run_id}] Deleted {deleted} row(s) from {table}")
    return {f"{table}_deleted": deleted for table, deleted in counts.items()}


# ---------------------------------------------------------------------------
# Unified CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default=MODE_MERGE,
    type=click.Choice(MODES),
    show_default=True,
    help="Import mode",
)
@click.option("--input-path", default=None, type=click.Path(), help="Input CSV, JSON or XLSX file")
@click.option(
    "--format",
    "fmt",
    default=None,
    type=click.Choice(["csv", "json"]),
    help="[preview|merge|replace] Input format; inferred from the file extension when omitted",
)
@click.option("--db-dsn", envvar="DB_DSN", default=None, help="PostgreSQL DSN (default: $DB_DSN)")
@click.option(
    "--settings-path",
    default=None,
    type=click.Path(),
    help="YAML settings file (default: config/import_settings.yml when present)",
)
@click.option(
    "--reconcile-mode",
    default=None,
    type=click.Choice(sorted(STRATEGIES)),
    help="[xlsx] Reconcile strategy; overrides the settings file",
)
@click.option("--max-reject-rate", default=None, type=float, help="[merge|replace] Overrides the settings file")
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--rejects-path", default=None, help="Overrides the settings file")
@click.option("--reports-dir", default=None, help="Overrides the settings file")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    mode: str,
    input_path: str | None,
    fmt: str | None,
    db_dsn: str | None,
    settings_path: str | None,
    reconcile_mode: str | None,
    max_reject_rate: float | None,
    dry_run: bool,
    rejects_path: str | None,
    reports_dir: str | None,
    run_id: str | None,
    log_level: str,
) -> None:
    """Unified event-planning import CLI."""
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = resolve_settings(settings_path)
    except (ImportSettingsError, FileNotFoundError) as exc:
        _fatal(run_id, f"invalid settings: {exc}")
    settings = settings.with_overrides(
        reconcile_mode=reconcile_mode,
        max_reject_rate=max_reject_rate,
        rejects_path=rejects_path,
        reports_dir=reports_dir,
    )

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "preview":
        path = _require_input(input_path, run_id, mode)
        counters = _run_preview(path, _infer_format(path, fmt, run_id), run_id)
    elif mode in (MODE_MERGE, MODE_REPLACE):
        path = _require_input(input_path, run_id, mode)
        counters = _run_rows(
            path,
            _infer_format(path, fmt, run_id),
            _require_dsn(db_dsn, run_id),
            mode,
            settings,
            run_id,
            dry_run,
        )
    elif mode == "xlsx":
        path = _require_input(input_path, run_id, mode)
        counters = _run_xlsx(
            path, _require_dsn(db_dsn, run_id), settings.reconcile_mode, run_id, dry_run
        )
    elif mode == "work_categories":
        path = _require_input(input_path, run_id, mode)
        counters = _run_work_categories(path, _require_dsn(db_dsn, run_id), run_id, dry_run)
    else:
        counters = _run_purge(_require_dsn(db_dsn, run_id), run_id, dry_run)

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"input_path": input_path},
        counters,
        reports_dir=settings.reports_dir,
        extra={
            "reconcile_mode": mode if mode in (MODE_MERGE, MODE_REPLACE) else settings.reconcile_mode,
            "settings_path": str(settings.source_path) if settings.source_path else None,
            "settings_yaml_hash": settings.yaml_hash,
        },
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


if __name__ == "__main__":
    main()
