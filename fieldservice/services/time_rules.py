"""
Time helpers.
Normalizes stored timestamps to UTC and computes calendar-day windows in the
business timezone.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple, Union
import pytz
from ..config import settings


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Return ``dt`` as a timezone-aware UTC datetime.

    SQLite hands back naive datetimes; those are assumed to already be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def day_bounds_utc(now: Optional[datetime] = None, timezone_str: Optional[str] = None) -> Tuple[datetime, datetime]:
    """
    UTC start and end of the local calendar day containing ``now``.

    Args:
        now: Reference instant (defaults to the current time)
        timezone_str: Timezone defining the calendar day (defaults to settings)

    Returns:
        (start, end) with start inclusive and end exclusive
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    local_now = ensure_utc(now or utc_now()).astimezone(tz)
    start_local = tz.localize(datetime(local_now.year, local_now.month, local_now.day))
    end_local = tz.localize(datetime(local_now.year, local_now.month, local_now.day) + timedelta(days=1))
    return start_local.astimezone(pytz.UTC), end_local.astimezone(pytz.UTC)


def local_date_stamp(now: Optional[datetime] = None, timezone_str: Optional[str] = None) -> str:
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return ensure_utc(now or utc_now()).astimezone(tz).strftime("%Y%m%d")


def hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600


def to_iso(value: Union[datetime, str, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return ensure_utc(value).isoformat()


def parse_iso(value: Union[datetime, str, None]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def local_date_range_utc(
    start_date: Optional[date],
    end_date: Optional[date],
    timezone_str: Optional[str] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    UTC bounds covering whole local calendar days from ``start_date`` to
    ``end_date`` inclusive. Either side may be open.
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    start = end = None
    if start_date is not None:
        start = tz.localize(datetime.combine(start_date, time.min)).astimezone(pytz.UTC)
    if end_date is not None:
        end = tz.localize(datetime.combine(end_date, time.max)).astimezone(pytz.UTC)
    return start, end
