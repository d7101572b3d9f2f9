"""
Calendar helpers. Everything user-facing is bucketed in the display
timezone, never in UTC.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional


def local_datetime(timestamp: int, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).astimezone(tz)


def date_month_for(timestamp: int, tz: tzinfo) -> tuple[str, str]:
    """Return (`YYYY-MM-DD`, `YYYY-MM`) for an epoch timestamp in `tz`."""
    local = local_datetime(timestamp, tz)
    return local.strftime("%Y-%m-%d"), local.strftime("%Y-%m")


def today_in(tz: tzinfo, now: Optional[datetime] = None) -> date:
    now = now or datetime.now(tz=timezone.utc)
    return now.astimezone(tz).date()


def is_weekday(day: date) -> bool:
    return day.weekday() < 5


def previous_business_day(day: date) -> date:
    """Monday → previous Friday, any other day → the day before."""
    if day.weekday() == 0:
        return day - timedelta(days=3)
    if day.weekday() == 6:
        return day - timedelta(days=2)
    return day - timedelta(days=1)
