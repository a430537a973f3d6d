"""
Unit tests for config.defaults module.

Environment overrides apply only where a variable is set.
"""

import pytest

from callscribe.config.defaults import (
    apply_feature_defaults,
    apply_logging_defaults,
    apply_reaper_defaults,
    apply_store_defaults,
    apply_webhook_defaults,
)

_ENV_NAMES = (
    "CALLSCRIBE_STORE_BACKEND",
    "CALLSCRIBE_DB_PATH",
    "ENABLE_TRANSCRIPTION",
    "ENABLE_SUMMARIES",
    "STALE_CALL_MINUTES",
    "CLEANUP_INTERVAL_MINUTES",
    "WEBHOOK_HEADER_NAME",
    "WEBHOOK_ENFORCE_KEY",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestApplyStoreDefaults:
    def test_yaml_values_kept_without_env(self):
        config_data = {"store": {"backend": "sqlite", "db_path": "/var/lib/cs.db"}}

        apply_store_defaults(config_data)

        assert config_data["store"] == {"backend": "sqlite", "db_path": "/var/lib/cs.db"}

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("CALLSCRIBE_STORE_BACKEND", " SQLite ")
        monkeypatch.setenv("CALLSCRIBE_DB_PATH", "/tmp/cs.db")
        config_data = {}

        apply_store_defaults(config_data)

        assert config_data["store"] == {"backend": "sqlite", "db_path": "/tmp/cs.db"}


class TestApplyFeatureDefaults:
    @pytest.mark.parametrize("raw, expected", [("1", True), ("true", True), ("on", True), ("0", False), ("no", False)])
    def test_boolean_parsing(self, monkeypatch, raw, expected):
        monkeypatch.setenv("ENABLE_SUMMARIES", raw)
        config_data = {"features": {"enable_transcription": False}}

        apply_feature_defaults(config_data)

        assert config_data["features"]["enable_summaries"] is expected
        assert config_data["features"]["enable_transcription"] is False


class TestApplyReaperDefaults:
    def test_numeric_overrides(self, monkeypatch):
        monkeypatch.setenv("STALE_CALL_MINUTES", "60")
        monkeypatch.setenv("CLEANUP_INTERVAL_MINUTES", "5")
        config_data = {}

        apply_reaper_defaults(config_data)

        assert config_data["reaper"] == {"stale_call_minutes": 60, "interval_minutes": 5}

    def test_garbage_is_ignored(self, monkeypatch):
        monkeypatch.setenv("STALE_CALL_MINUTES", "soon")
        config_data = {"reaper": {"stale_call_minutes": 90}}

        apply_reaper_defaults(config_data)

        assert config_data["reaper"]["stale_call_minutes"] == 90


class TestApplyWebhookAndLoggingDefaults:
    def test_webhook_overrides(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_HEADER_NAME", "x-acs-key")
        monkeypatch.setenv("WEBHOOK_ENFORCE_KEY", "0")
        config_data = {}

        apply_webhook_defaults(config_data)

        assert config_data["webhook"] == {"header_name": "x-acs-key", "enforce_key": False}

    def test_log_level_is_lowercased(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        config_data = {}

        apply_logging_defaults(config_data)

        assert config_data["logging"]["level"] == "debug"
