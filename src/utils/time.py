from __future__ import annotations

from contextlib import suppress
from datetime import UTC, date, datetime
from typing import Any
from zoneinfo import ZoneInfo

LOCAL_TZ = ZoneInfo("America/Chicago")

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%Y%m%d",
    "%b %d, %Y",
    "%B %d, %Y",
)


def now_utc() -> datetime:
    """Return timezone-aware UTC timestamp."""
    return datetime.now(tz=UTC)


def today_local() -> date:
    """Return today's date in the county's timezone."""
    return datetime.now(tz=LOCAL_TZ).date()


def current_year() -> int:
    return today_local().year


def parse_date(value: Any) -> date | None:
    """Parse common date formats to a date object."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        with suppress(ValueError):
            return datetime.fromisoformat(raw).date()
        for fmt in _DATE_FORMATS:
            with suppress(ValueError):
                return datetime.strptime(raw, fmt).date()
    return None


def compact_date(value: date) -> str:
    """Format a date as YYYYMMDD (clerk search date range format)."""
    return value.strftime("%Y%m%d")
