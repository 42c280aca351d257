from datetime import date, datetime, time, timezone as dt_timezone
from zoneinfo import ZoneInfo


def to_utc_aware(dt: datetime | None) -> datetime | None:
    """
    Normalize any datetime to UTC-aware (tzinfo=UTC).
    - Aware datetimes are converted to UTC
    - Naive datetimes are assumed UTC and tz attached (SQLite drops tzinfo on read)
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc)


def local_midnight(now: datetime, tz: ZoneInfo) -> datetime:
    """Start of `now`'s calendar day in `tz`, tz-aware."""
    return datetime.combine(to_utc_aware(now).astimezone(tz).date(), time.min, tzinfo=tz)


def local_date(dt: datetime, tz: ZoneInfo) -> date:
    return to_utc_aware(dt).astimezone(tz).date()


def at_local_hour(day: date, hour: int, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time(hour=hour), tzinfo=tz)
