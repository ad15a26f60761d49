"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timezone


def days_between(start: date, end: date) -> int:
    """Whole days from start to end (negative when end is earlier)"""
    return (end - start).days


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping day to the last day of the month"""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def as_utc(moment: datetime) -> datetime:
    """Normalize to aware UTC; naive values are taken to already be UTC"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
