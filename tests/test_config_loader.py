"""Tests for tokentop.config.loader and tokentop.config.schema."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from tokentop.config import (
    AlertsConfig,
    AppConfig,
    BudgetsConfig,
    ConfigError,
    PluginsConfig,
    load_config,
    merge_with_defaults,
    save_config,
)
from tokentop.config.loader import _deep_merge, default_config_dict


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _write_json(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------

class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.json")
        assert config == AppConfig()
        assert config.alerts.warning_percent == 80
        assert config.alerts.critical_percent == 95
        assert config.budgets.currency == "USD"

    def test_partial_file_merged(self, tmp_path):
        p = _write_json(tmp_path / "c.json", {
            "alerts": {"warningPercent": 70},
            "budgets": {"daily": 25},
        })
        config = load_config(p)
        assert config.alerts.warning_percent == 70
        assert config.alerts.critical_percent == 95
        assert config.budgets.daily == 25
        assert config.budgets.weekly is None

    def test_snake_case_keys_accepted(self, tmp_path):
        p = _write_json(tmp_path / "c.json", {"alerts": {"critical_percent": 99}})
        assert load_config(p).alerts.critical_percent == 99

    def test_plugins_section(self, tmp_path):
        p = _write_json(tmp_path / "c.json", {
            "plugins": {"local": ["~/my-theme.py"], "remote": ["tokentop-provider-acme>=1.0"],
                        "disabled": ["visual-flash"]},
        })
        plugins = load_config(p).plugins
        assert plugins.local == ["~/my-theme.py"]
        assert plugins.remote == ["tokentop-provider-acme>=1.0"]
        assert plugins.disabled == ["visual-flash"]

    def test_notifications_pass_through(self, tmp_path):
        p = _write_json(tmp_path / "c.json", {
            "notifications": {"terminal-bell": {"enabled": False, "min_severity": "critical"}},
        })
        config = load_config(p)
        assert config.notifications == {
            "terminal-bell": {"enabled": False, "min_severity": "critical"},
        }

    def test_malformed_json_falls_back(self, tmp_path, caplog):
        p = tmp_path / "c.json"
        p.write_text("{not json", encoding="utf-8")
        with caplog.at_level("WARNING", logger="tokentop.config.loader"):
            config = load_config(p)
        assert config == AppConfig()
        assert "Ignoring malformed config" in caplog.text

    def test_malformed_json_strict(self, tmp_path):
        p = tmp_path / "c.json"
        p.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError, match="malformed JSON"):
            load_config(p, strict=True)

    def test_top_level_must_be_object(self, tmp_path):
        p = _write_json(tmp_path / "c.json", [1, 2, 3])
        with pytest.raises(ConfigError, match="top level must be a JSON object"):
            load_config(p)

    def test_invalid_content_raises(self, tmp_path):
        p = _write_json(tmp_path / "c.json", {
            "alerts": {"warningPercent": 90, "criticalPercent": 50},
        })
        with pytest.raises(ConfigError) as exc_info:
            load_config(p)
        assert exc_info.value.path == p
        assert "criticalPercent (50.0) must be >= warningPercent (90.0)" in str(exc_info.value)

    def test_negative_budget_raises(self, tmp_path):
        p = _write_json(tmp_path / "c.json", {"budgets": {"daily": -5}})
        with pytest.raises(ConfigError):
            load_config(p)

    def test_unknown_keys_ignored(self, tmp_path):
        p = _write_json(tmp_path / "c.json", {"display": {"refreshMs": 500}})
        assert load_config(p) == AppConfig()


# ---------------------------------------------------------------------------
# merge_with_defaults / _deep_merge
# ---------------------------------------------------------------------------

class TestMerge:
    def test_empty_partial(self):
        assert merge_with_defaults({}) == AppConfig()

    def test_lists_replaced(self):
        base = {"a": [1, 2], "b": {"c": 1, "d": 2}}
        merged = _deep_merge(base, {"a": [3], "b": {"d": 5}})
        assert merged == {"a": [3], "b": {"c": 1, "d": 5}}
        assert base == {"a": [1, 2], "b": {"c": 1, "d": 2}}

    def test_invalid_merge_raises_validation_error(self):
        with pytest.raises(ValidationError):
            merge_with_defaults({"alerts": {"warningPercent": 2000}})

    def test_default_dict_is_camel_case(self):
        data = default_config_dict()
        assert data["alerts"] == {"warningPercent": 80.0, "criticalPercent": 95.0}
        assert set(data) == {"plugins", "alerts", "budgets", "notifications"}


# ---------------------------------------------------------------------------
# save_config
# ---------------------------------------------------------------------------

class TestSaveConfig:
    def test_round_trip(self, tmp_path):
        p = tmp_path / "nested" / "config.json"
        config = AppConfig(
            alerts=AlertsConfig(warning_percent=60, critical_percent=90),
            budgets=BudgetsConfig(monthly=100),
            notifications={"visual-flash": {"enabled": False}},
        )
        save_config(config, p)
        assert load_config(p) == config

    def test_written_with_camel_case(self, tmp_path):
        p = tmp_path / "config.json"
        save_config(AppConfig(), p)
        raw = json.loads(p.read_text(encoding="utf-8"))
        assert "warningPercent" in raw["alerts"]
        assert not (tmp_path / "config.tmp").exists()


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class TestSchema:
    def test_blank_plugin_entries_stripped(self):
        plugins = PluginsConfig(local=["  ", " ./theme.py "], remote=[""], disabled=["x"])
        assert plugins.local == ["./theme.py"]
        assert plugins.remote == []
        assert plugins.disabled == ["x"]

    def test_equal_thresholds_allowed(self):
        alerts = AlertsConfig(warning_percent=90, critical_percent=90)
        assert alerts.critical_percent == 90

    def test_limit_for(self):
        budgets = BudgetsConfig(daily=10, monthly=200)
        assert budgets.limit_for("daily") == 10
        assert budgets.limit_for("weekly") is None
        assert budgets.limit_for("monthly") == 200

    def test_limit_for_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown budget type"):
            BudgetsConfig().limit_for("hourly")
