"""
Calendar-date helpers.

Dates are stored and exchanged as ISO strings (YYYY-MM-DD). Supabase may hand
back DATE columns as plain strings and timestamp-ish values with a time part,
so parsing only looks at the leading date.
"""

from datetime import date
from typing import Any, Optional, Union

DateLike = Union[date, str]


def parse_date(value: DateLike) -> date:
    """Parse a date or an ISO date string into a date."""
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}. Expected YYYY-MM-DD")


def parse_optional_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    return parse_date(value)


def to_iso(value: DateLike) -> str:
    """Format a date (or date string) as YYYY-MM-DD."""
    return parse_date(value).isoformat()
