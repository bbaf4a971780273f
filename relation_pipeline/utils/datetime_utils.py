"""
Datetime utility functions for discovery windows and snapshot timestamps
"""
from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def parse_date_bound(value: Union[None, str, date, datetime]) -> Optional[datetime]:
    """
    Convert a trigger window bound to a timezone-aware datetime

    Handles multiple cases:
    - None / empty string -> None (caller applies its default)
    - Python datetime -> UTC if naive, otherwise as-is
    - Python date -> midnight UTC
    - String 'YYYY-MM-DD' or ISO datetime (trailing 'Z' allowed)

    Raises:
        ValueError: value cannot be interpreted as a date
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    raise ValueError(f"Cannot convert {type(value).__name__} to datetime: {value!r}")
