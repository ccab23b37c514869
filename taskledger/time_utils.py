"""
Timestamp helpers.

Fact and projection timestamps are stored as UTC ISO-8601 strings with
microseconds so that lexical order matches chronological order.
"""

from datetime import date, datetime, timezone
from typing import Optional, Union

Timestamp = Union[str, datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as a fixed-width UTC ISO string (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Timestamp) -> datetime:
    """Parse an ISO string (``Z`` suffix allowed) or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("empty timestamp")
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: Timestamp) -> str:
    return format_timestamp(parse_timestamp(value))


def to_date(value: Optional[Union[str, date, datetime]]) -> Optional[date]:
    """Calendar day (UTC) of a timestamp or plain ``YYYY-MM-DD`` string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return parse_timestamp(value).date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_timestamp(text).date()
