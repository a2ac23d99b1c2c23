"""Unit tests for planning_etl.settings."""

import hashlib
from pathlib import Path

import pytest

from planning_etl.settings import (
    DEFAULT_SETTINGS,
    ImportSettingsError,
    load_import_settings,
    resolve_settings,
    validate_import_settings,
)

PROJECT_ROOT = Path(__file__).parent.parent.parent


class TestLoadImportSettings:
    def test_full_file(self, tmp_path):
        raw = (
            "reconcile_mode: replace\n"
            "max_reject_rate: 0.2\n"
            "rejects_path: out/rejects.csv\n"
            "reports_dir: out/reports\n"
        )
        path = tmp_path / "settings.yml"
        path.write_text(raw, encoding="utf-8")

        settings = load_import_settings(path)

        assert settings.reconcile_mode == "replace"
        assert settings.max_reject_rate == 0.2
        assert settings.rejects_path == Path("out/rejects.csv")
        assert settings.reports_dir == Path("out/reports")
        assert settings.source_path == path
        assert settings.yaml_hash == hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "settings.yml"
        path.write_text("max_reject_rate: 0\n", encoding="utf-8")
        settings = load_import_settings(path)
        assert settings.max_reject_rate == 0.0
        assert settings.reconcile_mode == DEFAULT_SETTINGS.reconcile_mode

    def test_empty_file(self, tmp_path):
        path = tmp_path / "settings.yml"
        path.write_text("", encoding="utf-8")
        assert load_import_settings(path).reconcile_mode == "merge"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "settings.yml"
        path.write_text("reconcile_mode: [unclosed\n", encoding="utf-8")
        with pytest.raises(ImportSettingsError, match="invalid YAML"):
            load_import_settings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_import_settings(tmp_path / "nope.yml")

    def test_shipped_config_is_valid(self):
        settings = load_import_settings(PROJECT_ROOT / "config" / "import_settings.yml")
        assert settings.reconcile_mode == "merge"


class TestValidateImportSettings:
    def test_unknown_key(self):
        with pytest.raises(ImportSettingsError, match="unknown settings key"):
            validate_import_settings({"reconcile_mdoe": "merge"})

    def test_bad_mode(self):
        with pytest.raises(ImportSettingsError, match="reconcile_mode"):
            validate_import_settings({"reconcile_mode": "upsert"})

    @pytest.mark.parametrize("rate", [-0.1, 1.5, "high", True])
    def test_bad_rate(self, rate):
        with pytest.raises(ImportSettingsError, match="max_reject_rate"):
            validate_import_settings({"max_reject_rate": rate})

    def test_blank_path(self):
        with pytest.raises(ImportSettingsError, match="reports_dir"):
            validate_import_settings({"reports_dir": "  "})

    def test_not_a_mapping(self):
        with pytest.raises(ImportSettingsError):
            validate_import_settings(["merge"])


class TestOverrides:
    def test_none_values_do_not_override(self):
        settings = DEFAULT_SETTINGS.with_overrides(max_reject_rate=None, reconcile_mode="replace")
        assert settings.max_reject_rate == DEFAULT_SETTINGS.max_reject_rate
        assert settings.reconcile_mode == "replace"

    def test_paths_are_coerced(self):
        settings = DEFAULT_SETTINGS.with_overrides(reports_dir="x/y")
        assert settings.reports_dir == Path("x/y")


class TestResolveSettings:
    def test_defaults_when_no_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert resolve_settings(None) is DEFAULT_SETTINGS

    def test_default_file_is_picked_up(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "import_settings.yml").write_text(
            "reconcile_mode: replace\n", encoding="utf-8"
        )
        assert resolve_settings(None).reconcile_mode == "replace"
