"""
Runtime configuration read from the environment.

Call load_env() first so values from a local .env file are visible.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigError

DEFAULT_API_BASE_URL = "https://openapi.lingxing.com"
DEFAULT_TIMEZONE = "Asia/Shanghai"

T = TypeVar("T")


def _read(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError as e:
        raise ConfigError(f"Invalid value for {name}: {raw!r} ({e})") from e


@dataclass(frozen=True)
class Settings:
    api_base_url: str = DEFAULT_API_BASE_URL
    db_path: Path = Path("data/erpsync.db")
    timezone: str = DEFAULT_TIMEZONE
    default_lookback_days: int = 7
    delay_between_pages: float = 0.5
    delay_between_shards: float = 0.5
    delay_between_accounts: float = 1.0
    request_timeout: float = 30.0
    log_level: str = "INFO"
    log_dir: Optional[Path] = Path("logs")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ERPSYNC_* environment variables."""
        settings = cls(
            api_base_url=_read("ERPSYNC_API_BASE_URL", DEFAULT_API_BASE_URL, str).rstrip("/"),
            db_path=_read("ERPSYNC_DB_PATH", Path("data/erpsync.db"), Path),
            timezone=_read("ERPSYNC_TIMEZONE", DEFAULT_TIMEZONE, str),
            default_lookback_days=_read("ERPSYNC_LOOKBACK_DAYS", 7, int),
            delay_between_pages=_read("ERPSYNC_PAGE_DELAY", 0.5, float),
            delay_between_shards=_read("ERPSYNC_SHARD_DELAY", 0.5, float),
            delay_between_accounts=_read("ERPSYNC_ACCOUNT_DELAY", 1.0, float),
            request_timeout=_read("ERPSYNC_REQUEST_TIMEOUT", 30.0, float),
            log_level=_read("ERPSYNC_LOG_LEVEL", "INFO", str).upper(),
            log_dir=_read("ERPSYNC_LOG_DIR", Path("logs"), Path),
        )
        if settings.default_lookback_days < 1:
            raise ConfigError("ERPSYNC_LOOKBACK_DAYS must be >= 1")
        try:
            ZoneInfo(settings.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Invalid value for ERPSYNC_TIMEZONE: {settings.timezone}") from e
        if settings.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid value for ERPSYNC_LOG_LEVEL: {settings.log_level}")
        return settings
