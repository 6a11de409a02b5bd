"""
Business Day Resolver
Maps timestamps to business-date buckets for reporting and kitchen views.

Example: with start 10:00 and end 03:00, orders from 03:00 on Jan 20 up to
02:59 on Jan 21 all belong to business date "2023-01-20".

Timestamps carrying an offset are converted to the restaurant timezone (the
system local zone when none is configured) before bucketing; naive timestamps
are taken as restaurant wall-clock time.

Every business day is exactly one wall-clock day long and anchored on the
closing time, so buckets never overlap and never leave a gap:
- window crosses midnight (end <= start): bucket d = [d end, d+1 end)
- same-day window (end > start):          bucket d = [d-1 end, d end)
"""

from datetime import date, datetime, timedelta, tzinfo
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar, Union

from order_sync.core.exceptions import ValidationError
from order_sync.schemas.order import BusinessDayConfig

T = TypeVar("T")

DATE_FORMAT = "%Y-%m-%d"


def _parse_timestamp(timestamp: Union[datetime, str]) -> datetime:
    if isinstance(timestamp, datetime):
        return timestamp
    try:
        # fromisoformat only accepts a trailing Z from Python 3.11
        if isinstance(timestamp, str) and timestamp.endswith(("Z", "z")):
            timestamp = timestamp[:-1] + "+00:00"
        return datetime.fromisoformat(timestamp)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid timestamp: {timestamp!r}")


def _parse_date(date_string: str) -> date:
    try:
        return datetime.strptime(date_string, DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid business date: {date_string!r} (expected YYYY-MM-DD)")


def business_date(
    timestamp: Union[datetime, str],
    config: BusinessDayConfig,
    tz: Optional[tzinfo] = None,
) -> str:
    """Return the business date (YYYY-MM-DD) the timestamp belongs to."""
    ts = _parse_timestamp(timestamp)
    if ts.tzinfo is not None:
        ts = ts.astimezone(tz)
    calendar_day = ts.date()
    wall_clock = ts.time().replace(tzinfo=None)

    if config.crosses_midnight:
        # Early-morning hours before closing still belong to yesterday
        if wall_clock < config.end_time:
            calendar_day -= timedelta(days=1)
    else:
        # After closing, the next business day has started
        if wall_clock >= config.end_time:
            calendar_day += timedelta(days=1)

    return calendar_day.strftime(DATE_FORMAT)


def business_day_range(
    date_string: str,
    config: BusinessDayConfig,
    tz: Optional[tzinfo] = None,
) -> Tuple[datetime, datetime]:
    """Return the half-open [start, end) range covered by a business date."""
    day = _parse_date(date_string)
    anchor_day = day if config.crosses_midnight else day - timedelta(days=1)
    start = datetime.combine(anchor_day, config.end_time, tzinfo=tz)
    return start, start + timedelta(days=1)


def todays_business_date(
    config: BusinessDayConfig,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> str:
    return business_date(now or datetime.now(tz), config, tz)


def is_in_todays_business_day(
    timestamp: Union[datetime, str],
    config: BusinessDayConfig,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> bool:
    return business_date(timestamp, config, tz) == todays_business_date(config, now, tz)


def filter_by_business_date(
    records: Iterable[T],
    date_string: str,
    config: BusinessDayConfig,
    key: Callable[[T], Union[datetime, str]] = lambda r: r["created_at"],
    tz: Optional[tzinfo] = None,
) -> List[T]:
    """Keep only the records whose timestamp falls in the given business date."""
    _parse_date(date_string)
    return [r for r in records if business_date(key(r), config, tz) == date_string]
