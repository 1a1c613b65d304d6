from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def parse_iso8601(dt_str: str) -> datetime:
    # Trackers emit e.g. 2024-01-01T00:00:00Z
    s = dt_str.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(s))


def as_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def week_start(day: date | datetime) -> date:
    """Monday of the calendar week containing ``day``.

    Sunday belongs to the week that started six days earlier.
    """
    if isinstance(day, datetime):
        day = as_utc(day).date()
    return day - timedelta(days=day.weekday())
