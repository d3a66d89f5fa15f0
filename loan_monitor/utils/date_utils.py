"""Date manipulation utilities"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_start(now: datetime) -> datetime:
    """First instant of the UTC calendar month containing `now`"""
    now = as_utc(now)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end"""
    return (as_utc(end) - as_utc(start)).total_seconds() / 86400
