"""planning_etl.shared

Shared utilities used by every import mode.
Includes the exception taxonomy, RejectWriter and
report-writing support.
"""

from __future__ import annotations

import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ImportRequestError(Exception):
    """Raised for structural problems with an import request (client error)."""


class MissingEventsError(ImportRequestError):
    """Raised when a dependent import references events that do not exist."""

    def __init__(self, event_names: list[str]) -> None:
        super().__init__(f"Missing events: {', '.join(event_names)}")
        self.event_names = event_names


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows.

    The header comes from ``fieldnames`` when given, else from the keys of
    the first rejected row.  Keys outside the header are dropped.
    """

    def __init__(self, path: Path, fieldnames: list[str] | None = None) -> None:
        self._path = path
        self._fieldnames = list(fieldnames) if fieldnames else None
        self._fh = None
        self._writer = None
        self.count = 0

    def write(self, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = (self._fieldnames or list(row.keys())) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()
        self.count += 1

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: dict[str, Any],
    reports_dir: Path = Path("./artifacts/reports"),
    extra: dict[str, Any] | None = None,
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        **(extra or {}),
        "counters": counters,
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
