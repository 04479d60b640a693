from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso(seconds: bool = True) -> str:
    """
    Return current UTC time in ISO-8601 format.
    - If seconds is True, use seconds precision (stable strings).
    - Else, use milliseconds precision.
    """
    if seconds:
        return utc_now().isoformat(timespec="seconds")
    return utc_now().isoformat(timespec="milliseconds")


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def age_since(created_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[timedelta]:
    created = ensure_utc(created_at)
    if created is None:
        return None
    return (now or utc_now()) - created


def format_age(age: Optional[timedelta]) -> str:
    """
    Render a duration as e.g. '3d 4h 5m'. Seconds are dropped once the age
    passes an hour.
    """
    if age is None:
        return "unknown"
    total = int(age.total_seconds())
    if total < 0:
        total = 0
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {seconds}s"


def format_report_time(value: Optional[datetime]) -> str:
    """
    Format as '1 Jan, 2006 at 3:04pm (UTC)'.
    """
    dt = ensure_utc(value)
    if dt is None:
        return "unknown"
    hour = dt.hour % 12 or 12
    meridiem = "am" if dt.hour < 12 else "pm"
    return f"{dt.day} {dt.strftime('%b')}, {dt.year} at {hour}:{dt.minute:02d}{meridiem} (UTC)"
