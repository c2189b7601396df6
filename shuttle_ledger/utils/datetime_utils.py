"""
Datetime utility functions.
"""

from datetime import date, datetime, time
from typing import Optional, Union
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def today() -> date:
    """Current date in UTC."""
    return utcnow().date()


def parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """
    Parse an ISO date ("2026-01-21") or ISO timestamp into a date.

    Returns None for empty input. Raises ValueError for malformed strings.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "T" in text or " " in text:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def parse_time(value: Union[str, time, None]) -> Optional[time]:
    """Parse "HH:MM" or "HH:MM:SS" into a time, None for empty input."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value).strip())


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are assumed to be UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = pytz.UTC.localize(parsed)
    return parsed


def isoformat_or_none(value) -> Optional[str]:
    """ISO string for date/time/datetime values, None passes through."""
    if value is None:
        return None
    if isinstance(value, datetime) and value.tzinfo is None:
        value = pytz.UTC.localize(value)
    return value.isoformat()
