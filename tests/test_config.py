"""
Tests for environment-driven settings.
"""

import os
import pytest
from pathlib import Path

from erpsync.config import Settings
from erpsync.env import load_env
from erpsync.errors import ConfigError

ENV_VARS = [
    "ERPSYNC_API_BASE_URL",
    "ERPSYNC_DB_PATH",
    "ERPSYNC_TIMEZONE",
    "ERPSYNC_LOOKBACK_DAYS",
    "ERPSYNC_PAGE_DELAY",
    "ERPSYNC_SHARD_DELAY",
    "ERPSYNC_ACCOUNT_DELAY",
    "ERPSYNC_REQUEST_TIMEOUT",
    "ERPSYNC_LOG_LEVEL",
    "ERPSYNC_LOG_DIR",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_env()
        assert settings.api_base_url == "https://openapi.lingxing.com"
        assert settings.db_path == Path("data/erpsync.db")
        assert settings.timezone == "Asia/Shanghai"
        assert settings.default_lookback_days == 7
        assert settings.delay_between_pages == 0.5
        assert settings.log_level == "INFO"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("ERPSYNC_API_BASE_URL", "https://vendor.test/")
        monkeypatch.setenv("ERPSYNC_LOOKBACK_DAYS", "30")
        monkeypatch.setenv("ERPSYNC_PAGE_DELAY", "0")
        monkeypatch.setenv("ERPSYNC_LOG_LEVEL", "debug")

        settings = Settings.from_env()
        assert settings.api_base_url == "https://vendor.test"
        assert settings.default_lookback_days == 30
        assert settings.delay_between_pages == 0.0
        assert settings.log_level == "DEBUG"

    def test_blank_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("ERPSYNC_LOOKBACK_DAYS", "  ")
        assert Settings.from_env().default_lookback_days == 7

    @pytest.mark.parametrize("name,value", [
        ("ERPSYNC_LOOKBACK_DAYS", "seven"),
        ("ERPSYNC_LOOKBACK_DAYS", "0"),
        ("ERPSYNC_PAGE_DELAY", "fast"),
        ("ERPSYNC_LOG_LEVEL", "LOUD"),
        ("ERPSYNC_TIMEZONE", "Mars/Base"),
    ])
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigError):
            Settings.from_env()


class TestLoadEnv:
    def test_reads_dotenv_from_cwd(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("ERPSYNC_TIMEZONE=UTC\n")
        monkeypatch.chdir(tmp_path)

        try:
            load_env()
            assert Settings.from_env().timezone == "UTC"
        finally:
            # load_dotenv writes os.environ directly
            os.environ.pop("ERPSYNC_TIMEZONE", None)

    def test_missing_dotenv_is_fine(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        load_env()
        assert Settings.from_env().timezone == "Asia/Shanghai"
