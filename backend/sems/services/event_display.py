"""
Display helpers for event listings: time range, scanner summary and the
clock-derived display status.
"""

from datetime import date, datetime
from typing import Optional

from sems.domain.time_utils import format_time_12h, parse_time_to_minutes
from sems.domain.types import DisplayStatus, ScannerConfig, SessionConfig


def compute_time_range(config: Optional[SessionConfig], today: date) -> str:
    """
    Earliest open to latest close, e.g. "07:00 AM - 04:00 PM".

    Uses today's sessions when today is configured, otherwise the first
    configured date.
    """
    if config is None or not config.dates:
        return "No sessions"

    target = config.for_date(today) or config.dates[0]
    if not target.sessions:
        return "No sessions"

    # HH:mm strings sort chronologically
    opens = min(s.opens for s in target.sessions)
    closes = max(s.closes for s in target.sessions)
    return f"{format_time_12h(opens)} - {format_time_12h(closes)}"


def scanner_summary(config: Optional[ScannerConfig]) -> str:
    count = len(config.scanner_ids) if config else 0
    if count == 0:
        return "No scanners"
    if count == 1:
        return "1 scanner"
    return f"{count} scanners"


def compute_event_status(
    start_date: Optional[date],
    end_date: Optional[date],
    config: Optional[SessionConfig],
    now: datetime,
) -> DisplayStatus:
    """
    live while any of today's sessions is open, completed once the last
    day's sessions are over, scheduled otherwise.

    `now` must already be in the school's local timezone.
    """
    today = now.date()
    minute = now.hour * 60 + now.minute

    if start_date is None:
        return DisplayStatus.SCHEDULED
    end_date = end_date or start_date

    if today < start_date:
        return DisplayStatus.SCHEDULED
    if today > end_date:
        return DisplayStatus.COMPLETED

    todays = config.for_date(today) if config else None
    if todays is None or not todays.sessions:
        return DisplayStatus.SCHEDULED if today == start_date else DisplayStatus.COMPLETED

    windows = [
        (parse_time_to_minutes(s.opens), parse_time_to_minutes(s.closes)) for s in todays.sessions
    ]
    windows = [(o, c) for o, c in windows if o is not None and c is not None]

    if any(o <= minute <= c for o, c in windows):
        return DisplayStatus.LIVE

    if windows and all(minute > c for _, c in windows) and today == end_date:
        return DisplayStatus.COMPLETED

    return DisplayStatus.SCHEDULED
