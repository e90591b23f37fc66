"""Canonical value normalization for all DB-bound assessment values.

Extracted fields arrive as free text ("$1,234,500", "2,150 sq ft",
"INT201900123456"). Every value that enters the database passes through
these functions first.
"""

import re
from typing import Any

from src.utils.time import parse_date

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]+")


def parse_number(value: Any) -> float | None:
    """Strip everything but digits, '.' and '-' and parse as float.

    Returns None for empty or unparsable input.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _NON_NUMERIC_RE.sub("", str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_year(value: Any) -> int | None:
    """Parse a tax/observation year; anything that is not a whole number is None."""
    number = parse_number(value)
    if number is None or number != int(number):
        return None
    return int(number)


def format_date(value: Any) -> str | None:
    """Return an ISO ``YYYY-MM-DD`` string, or None when the input is not a date."""
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def normalize_int_number(value: str | None) -> str | None:
    """Keep an instrument (INT) number only when it looks like one."""
    if not value:
        return None
    trimmed = value.strip()
    return trimmed if trimmed.upper().startswith("INT") else None


def clean_text(value: str | None) -> str | None:
    """Trim and collapse whitespace; empty strings become None."""
    if value is None:
        return None
    collapsed = " ".join(str(value).split())
    return collapsed or None
