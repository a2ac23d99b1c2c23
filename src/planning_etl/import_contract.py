"""planning_etl.import_contract

Canonical schema for declarative event imports.

Rules:
  - One row = one contiguous span of an event at a location, tagged with a
    lifecycle phase.
  - Rows are declarative and unordered; nothing is inferred or gap-filled.
  - Dates are inclusive calendar dates (YYYY-MM-DD on the wire).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PHASE_TYPES: tuple[str, ...] = (
    "ASSEMBLY",
    "MOVE_IN",
    "EVENT",
    "MOVE_OUT",
    "DISMANTLE",
)

# The phase whose rows describe the event's own duration.
PRIMARY_PHASE = "EVENT"

REQUIRED_COLUMNS: tuple[str, ...] = (
    "eventName",
    "locationName",
    "phase",
    "startDate",
    "endDate",
)

EVENT_STATUS_ACTIVE = "ACTIVE"

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

# Row-level errors
SIGNAL_EMPTY_REQUIRED_FIELD = "EMPTY_REQUIRED_FIELD"
SIGNAL_INVALID_ROW = "INVALID_ROW"
SIGNAL_UNKNOWN_PHASE = "UNKNOWN_PHASE"
SIGNAL_INVALID_DATE_FORMAT = "INVALID_DATE_FORMAT"
SIGNAL_END_BEFORE_START = "END_BEFORE_START"
# Row-level warnings
SIGNAL_DUPLICATE_ROW = "DUPLICATE_ROW"
# Cross-row (event-level) warnings
SIGNAL_NO_EVENT_PHASE = "NO_EVENT_PHASE"
SIGNAL_INCONSISTENT_EVENT_DATES = "INCONSISTENT_EVENT_DATES"
SIGNAL_PHASE_OUTSIDE_EVENT_RANGE = "PHASE_OUTSIDE_EVENT_RANGE"
# Cross-row (location-level) warnings
SIGNAL_OVERLAPPING_LOCATION_SPAN = "OVERLAPPING_LOCATION_SPAN"


# ---------------------------------------------------------------------------
# Canonical import row
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EventImportRow:
    event_name: str
    location_name: str
    phase: str
    start_date: date
    end_date: date

    @property
    def is_primary(self) -> bool:
        return self.phase == PRIMARY_PHASE

    @property
    def phase_key(self) -> tuple[str, date, date]:
        """Identity of the phase span this row declares within its event."""
        return (self.phase, self.start_date, self.end_date)

    def to_dict(self) -> dict[str, str]:
        return {
            "eventName": self.event_name,
            "locationName": self.location_name,
            "phase": self.phase,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
        }


# ---------------------------------------------------------------------------
# Validation signal
# ---------------------------------------------------------------------------

@dataclass
class ValidationSignal:
    """A structured error or warning attached to a row or to a whole import."""

    type: str
    severity: str
    message: str
    row_numbers: list[int] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "rowNumbers": list(self.row_numbers),
            "context": dict(self.context),
        }
