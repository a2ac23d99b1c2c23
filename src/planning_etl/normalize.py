"""Normalization functions for event import ingestion.

All functions accept loosely-typed cell values (str, None, or whatever a
JSON document or workbook cell produced) and return the appropriate type
or None.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

_ISO_DATE_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: cell_text  (JSON values / CSV cells → trimmed text)
# ---------------------------------------------------------------------------

def cell_text(value: Any) -> str:
    """Return the trimmed text form of a cell; None becomes ''.

    Non-string JSON scalars are stringified the way they were written
    (``2024`` → ``"2024"``), so a numeric eventName still groups by its
    literal text.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


# ---------------------------------------------------------------------------
# Rule 3: normalize_header  (workbook header matching)
# ---------------------------------------------------------------------------

def normalize_header(value: Any) -> str:
    """Lowercase, trim and collapse whitespace for header comparison."""
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value).strip().lower())


# ---------------------------------------------------------------------------
# Rule 4: is_iso_date_text / parse_iso_date
# ---------------------------------------------------------------------------

def is_iso_date_text(value: str | None) -> bool:
    """True when value is literally ``YYYY-MM-DD`` (digits only)."""
    v = trim(value)
    return v is not None and _ISO_DATE_RE.match(v) is not None


def parse_iso_date(value: str | None) -> date | None:
    """Parse a strict ``YYYY-MM-DD`` calendar date.

    Returns None when the text does not have that shape or does not name a
    real day (``2024-02-30``).  No timezone is involved: the result is a
    plain ``date``.
    """
    v = trim(value)
    if v is None or not _ISO_DATE_RE.match(v):
        return None
    try:
        return date.fromisoformat(v)
    except ValueError:
        return None


def cell_date(value: Any) -> date | None:
    """Return a date from a native workbook date cell, or None.

    Datetimes carrying a time-of-day are not calendar dates and yield None.
    """
    if isinstance(value, datetime):
        if value.time() != datetime.min.time():
            return None
        return value.date()
    if isinstance(value, date):
        return value
    return None


# ---------------------------------------------------------------------------
# Rule 5: parse_numeric
# ---------------------------------------------------------------------------

def parse_numeric(value: Any) -> Decimal | None:
    """Parse a decimal number from a cell, returning None on failure.

    Accepts ints/floats from workbook cells and text with either a dot or a
    single comma as decimal separator (``"7,5"`` → ``Decimal("7.5")``).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        v = trim(str(value))
        if v is None:
            return None
        text = v.replace(",", ".", 1)
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


# ---------------------------------------------------------------------------
# Rule 6: is_blank
# ---------------------------------------------------------------------------

def is_blank(value: Any) -> bool:
    """True for None and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False
