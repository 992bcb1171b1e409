"""Tests for tokentop.config.settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError


class TestSettings:
    """Test the Settings pydantic-settings class."""

    def _make(self, **kwargs):
        from tokentop.config.settings import Settings
        return Settings(**kwargs)

    # -- defaults --

    def test_defaults(self, monkeypatch):
        for name in ("TOKENTOP_LOG_LEVEL", "HOOK_TIMEOUT_SECONDS", "CIRCUIT_FAILURE_THRESHOLD"):
            monkeypatch.delenv(name, raising=False)
        s = self._make()
        assert s.TOKENTOP_LOG_LEVEL == "WARNING"
        assert s.HOOK_TIMEOUT_SECONDS == 5.0
        assert s.CIRCUIT_FAILURE_THRESHOLD == 5
        assert s.CIRCUIT_COOLDOWN_SECONDS == 60.0
        assert s.NOTIFICATION_DEDUP_WINDOW_SECONDS == 300.0
        assert s.NOTIFICATION_TIMEOUT_SECONDS == 10.0
        assert s.PACKAGE_INDEX_URL == "https://pypi.org/pypi"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CIRCUIT_FAILURE_THRESHOLD", "3")
        s = self._make()
        assert s.CIRCUIT_FAILURE_THRESHOLD == 3

    # -- log level --

    def test_log_level_normalized(self):
        s = self._make(TOKENTOP_LOG_LEVEL=" debug ")
        assert s.TOKENTOP_LOG_LEVEL == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            self._make(TOKENTOP_LOG_LEVEL="nope")

    # -- plugin host --

    def test_zero_threshold_rejected(self):
        with pytest.raises(ValidationError):
            self._make(CIRCUIT_FAILURE_THRESHOLD=0)

    @pytest.mark.parametrize("field", [
        "HOOK_TIMEOUT_SECONDS",
        "CIRCUIT_COOLDOWN_SECONDS",
        "NOTIFICATION_DEDUP_WINDOW_SECONDS",
        "NOTIFICATION_TIMEOUT_SECONDS",
    ])
    def test_negative_duration_rejected(self, field):
        with pytest.raises(ValidationError):
            self._make(**{field: -1})

    def test_zero_duration_allowed(self):
        s = self._make(CIRCUIT_COOLDOWN_SECONDS=0)
        assert s.CIRCUIT_COOLDOWN_SECONDS == 0

    # -- remote plugins --

    def test_index_url_trailing_slash_stripped(self):
        s = self._make(PACKAGE_INDEX_URL="https://index.example.com/pypi/")
        assert s.PACKAGE_INDEX_URL == "https://index.example.com/pypi"

    # -- paths --

    def test_path_properties_expand_home(self):
        s = self._make(
            TOKENTOP_CONFIG_PATH="~/tt/config.json",
            TOKENTOP_PLUGINS_DIR="~/tt/plugins",
            TOKENTOP_REMOTE_PLUGINS_DIR="~/tt/remote",
        )
        home = Path.home()
        assert s.config_path == home / "tt" / "config.json"
        assert s.plugins_dir == home / "tt" / "plugins"
        assert s.remote_plugins_dir == home / "tt" / "remote"

    def test_absolute_paths_untouched(self, tmp_path):
        s = self._make(TOKENTOP_PLUGINS_DIR=tmp_path)
        assert s.plugins_dir == tmp_path
