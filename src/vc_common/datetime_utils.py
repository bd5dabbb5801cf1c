"""Datetime utilities: UTC now plus the operational-timezone helpers used by sync."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def local_today(tz_name: str) -> date:
    return datetime.now(ZoneInfo(tz_name)).date()


def local_yesterday(tz_name: str) -> date:
    return local_today(tz_name) - timedelta(days=1)


def parse_provider_time(value: str | None) -> datetime | None:
    """Parse provider timestamps ('2025-09-01 12:30:00' or ISO-8601). Naive → UTC."""
    if not value:
        return None
    text_value = value.strip().replace("Z", "+00:00")
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(text_value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    parsed = datetime.fromisoformat(text_value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def local_day_range(start: date, end: date, tz_name: str) -> tuple[datetime, datetime]:
    """[start 00:00, end+1 00:00) in `tz_name` as aware datetimes; both days inclusive."""
    tz = ZoneInfo(tz_name)
    return (
        datetime.combine(start, time.min, tzinfo=tz),
        datetime.combine(end + timedelta(days=1), time.min, tzinfo=tz),
    )
