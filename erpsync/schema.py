from dataclasses import dataclass, fields
from datetime import date
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import Settings

INT_FIELDS = ["default_lookback_days", "page_size"]
DELAY_FIELDS = ["delay_between_pages", "delay_between_shards", "delay_between_accounts"]


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _valid_date(v: Any) -> bool:
    if isinstance(v, date):
        return True
    if not isinstance(v, str):
        return False
    try:
        date.fromisoformat(v.strip())
        return True
    except ValueError:
        return False


def valid_timezone(v: Any) -> bool:
    if not isinstance(v, str) or not v.strip():
        return False
    try:
        ZoneInfo(v)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def validate_run_options(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    Unknown keys are reported so typos in CLI wiring do not go unnoticed.
    """
    errors: List[str] = []
    known = {f.name for f in fields(RunOptions)}

    for k in data:
        if k not in known:
            errors.append(f"Unknown option: {k}")

    for f in INT_FIELDS:
        v = data.get(f)
        if v is None:
            continue
        if not _is_int(v):
            errors.append(f"Option '{f}' must be an integer")
        elif v < 1:
            errors.append(f"Option '{f}' must be >= 1")

    for f in DELAY_FIELDS:
        v = data.get(f)
        if v is None:
            continue
        if not _is_number(v):
            errors.append(f"Option '{f}' must be a number")
        elif v < 0:
            errors.append(f"Option '{f}' must not be negative")

    end_date = data.get("end_date")
    if end_date not in (None, "") and not _valid_date(end_date):
        errors.append("Option 'end_date' must be a date in YYYY-MM-DD format")

    timezone = data.get("timezone")
    if timezone is not None and not valid_timezone(timezone):
        errors.append(f"Option 'timezone' is not a known IANA timezone: {timezone!r}")

    if "fetch_details" in data and not isinstance(data["fetch_details"], bool):
        errors.append("Option 'fetch_details' must be a boolean")

    return errors


@dataclass
class RunOptions:
    """Knobs for one orchestrated run; None means "use the configured default"."""

    end_date: Optional[Any] = None
    default_lookback_days: Optional[int] = None
    page_size: Optional[int] = None
    delay_between_pages: Optional[float] = None
    delay_between_shards: Optional[float] = None
    delay_between_accounts: Optional[float] = None
    timezone: Optional[str] = None
    fetch_details: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunOptions":
        errors = validate_run_options(data)
        if errors:
            raise ValueError("; ".join(errors))
        return cls(**data)

    def with_defaults(self, settings: Settings) -> "RunOptions":
        """Fill unset values from settings."""
        return RunOptions(
            end_date=self.end_date,
            default_lookback_days=self.default_lookback_days or settings.default_lookback_days,
            page_size=self.page_size,
            delay_between_pages=(
                settings.delay_between_pages if self.delay_between_pages is None else self.delay_between_pages
            ),
            delay_between_shards=(
                settings.delay_between_shards if self.delay_between_shards is None else self.delay_between_shards
            ),
            delay_between_accounts=(
                settings.delay_between_accounts if self.delay_between_accounts is None else self.delay_between_accounts
            ),
            timezone=self.timezone or settings.timezone,
            fetch_details=self.fetch_details,
        )
