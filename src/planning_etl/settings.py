"""planning_etl.settings

YAML run settings for the import CLI.

Usage:
    from pathlib import Path
    from planning_etl.settings import load_import_settings

    settings = load_import_settings(Path("config/import_settings.yml"))
    settings.reconcile_mode   # "merge" | "replace"
    settings.yaml_hash        # sha256 of the raw file, for run reports

Precedence is applied by the caller: explicit CLI flags, then file values,
then DEFAULT_SETTINGS.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from planning_etl.reconcile import STRATEGIES

DEFAULT_SETTINGS_PATH = Path("config/import_settings.yml")

ALLOWED_KEYS = frozenset({"reconcile_mode", "max_reject_rate", "rejects_path", "reports_dir"})


class ImportSettingsError(ValueError):
    """Raised when a settings file fails validation."""


@dataclass(frozen=True)
class ImportSettings:
    reconcile_mode: str = "merge"
    max_reject_rate: float = 0.05
    rejects_path: Path = Path("./artifacts/rejects/event_import_rejects.csv")
    reports_dir: Path = Path("./artifacts/reports")
    source_path: Path | None = None
    yaml_hash: str | None = None
    raw_yaml: str = field(repr=False, default="")

    def with_overrides(self, **overrides: Any) -> ImportSettings:
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        for key in ("rejects_path", "reports_dir"):
            if key in values:
                values[key] = Path(values[key])
        return replace(self, **values)


DEFAULT_SETTINGS = ImportSettings()


def validate_import_settings(data: Any) -> None:
    """Raise ImportSettingsError if data does not match the settings schema.

    Validates:
      - top level is a mapping with only known keys
      - reconcile_mode names a registered strategy
      - max_reject_rate is a number in [0, 1]
      - paths are non-empty strings
    """
    if not isinstance(data, dict):
        raise ImportSettingsError("settings file must contain a mapping at top level")

    unknown = set(data) - ALLOWED_KEYS
    if unknown:
        raise ImportSettingsError(f"unknown settings key(s): {sorted(unknown)}")

    if "reconcile_mode" in data and data["reconcile_mode"] not in STRATEGIES:
        raise ImportSettingsError(
            f"reconcile_mode must be one of {sorted(STRATEGIES)}, "
            f"got {data['reconcile_mode']!r}"
        )

    if "max_reject_rate" in data:
        rate = data["max_reject_rate"]
        if isinstance(rate, bool) or not isinstance(rate, (int, float)):
            raise ImportSettingsError(f"max_reject_rate must be a number, got {rate!r}")
        if not 0 <= rate <= 1:
            raise ImportSettingsError(f"max_reject_rate must be between 0 and 1, got {rate}")

    for key in ("rejects_path", "reports_dir"):
        if key in data and (not isinstance(data[key], str) or not data[key].strip()):
            raise ImportSettingsError(f"{key} must be a non-empty string")


def load_import_settings(yaml_path: Path) -> ImportSettings:
    """Load, validate and return settings from a YAML file.

    An empty file yields the defaults (still hashed).

    Raises:
        ImportSettingsError: If the file is not valid YAML or fails validation.
        FileNotFoundError: If the file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ImportSettingsError(f"{yaml_path}: invalid YAML: {exc}") from exc
    if data is None:
        data = {}
    validate_import_settings(data)

    values: dict[str, Any] = {}
    if "reconcile_mode" in data:
        values["reconcile_mode"] = data["reconcile_mode"]
    if "max_reject_rate" in data:
        values["max_reject_rate"] = float(data["max_reject_rate"])
    for key in ("rejects_path", "reports_dir"):
        if key in data:
            values[key] = Path(data[key])

    return replace(
        DEFAULT_SETTINGS,
        **values,
        source_path=yaml_path,
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        raw_yaml=raw,
    )


def resolve_settings(settings_path: str | None) -> ImportSettings:
    """Load the explicit settings file, else the default file if present, else defaults."""
    if settings_path:
        return load_import_settings(Path(settings_path))
    if DEFAULT_SETTINGS_PATH.exists():
        return load_import_settings(DEFAULT_SETTINGS_PATH)
    return DEFAULT_SETTINGS
