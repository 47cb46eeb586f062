"""
Time-string helpers shared by the schedule validator and venue checker.

Times are "HH:mm" strings compared as minutes since midnight. Sessions are
same-day windows; nothing here handles windows that cross midnight.
"""

import re
from datetime import date, datetime, timezone
from typing import Optional

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def parse_time_to_minutes(value: Optional[str]) -> Optional[int]:
    """
    Convert "HH:mm" to minutes since midnight.

    Empty or malformed values return None ("unknown"); callers skip any
    comparison involving an unknown time instead of reporting an error.
    """
    if not value or not isinstance(value, str) or ":" not in value:
        return None
    hours, _, minutes = value.partition(":")
    if not (hours.strip().isdigit() and minutes.strip().isdigit()):
        return None
    return int(hours) * 60 + int(minutes)


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open overlap: touching endpoints do not overlap."""
    return a_start < b_end and a_end > b_start


def time_windows_overlap(a_opens: str, a_closes: str, b_opens: str, b_closes: str) -> bool:
    """Overlap test on HH:mm windows; any unknown endpoint means no overlap."""
    points = [parse_time_to_minutes(t) for t in (a_opens, a_closes, b_opens, b_closes)]
    if any(p is None for p in points):
        return False
    return intervals_overlap(*points)


def format_time_12h(value: Optional[str]) -> str:
    """Format "13:05" as "01:05 PM". Unknown times format as an empty string."""
    minutes = parse_time_to_minutes(value)
    if minutes is None:
        return ""
    hours, mins = divmod(minutes, 60)
    suffix = "PM" if hours >= 12 else "AM"
    hours12 = hours % 12 or 12
    return f"{hours12:02d}:{mins:02d} {suffix}"


def is_valid_time_string(value: object) -> bool:
    return isinstance(value, str) and bool(_TIME_RE.match(value))


def is_valid_date_string(value: object) -> bool:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def is_valid_uuid(value: object) -> bool:
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def parse_timestamp(value: object) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp; None when the value is not one.
    Naive timestamps are taken to be UTC.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
