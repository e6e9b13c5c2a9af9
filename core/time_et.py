"""
TIME_ET.PY - Single Source of Truth for ET Timezone Handling

RULES:
1. Server clock is UTC; stored timestamps are UTC-aware
2. A generation period is one ET calendar day: [00:00 ET, 00:00 ET next day)
3. Recency ages are measured in days from an explicit "now" so calibration
   runs are reproducible in tests
4. Uses zoneinfo ONLY - no pytz

Usage:
    from core.time_et import now_et, period_key, age_days

    period = period_key()           # "2026-10-19"
    start_utc, end_utc = period_bounds_utc(period)
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

# America/New_York timezone (single source of truth)
ET = ZoneInfo("America/New_York")


def now_et() -> datetime:
    """Current datetime in America/New_York."""
    return datetime.now(timezone.utc).astimezone(ET)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def period_key(when: Optional[datetime] = None) -> str:
    """
    ET date string identifying a generation period.

    Example:
        >>> period_key(datetime(2026, 10, 19, 3, 30, tzinfo=timezone.utc))
        '2026-10-18'
    """
    when = when or utc_now()
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(ET).date().isoformat()


def period_bounds_utc(period: str) -> Tuple[datetime, datetime]:
    """UTC [start, end) of an ET period key, for DB filtering."""
    day = datetime.strptime(period, "%Y-%m-%d").date()
    start_et = datetime.combine(day, time(0, 0, 0), tzinfo=ET)
    end_et = start_et + timedelta(days=1)
    return start_et.astimezone(timezone.utc), end_et.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO timestamp (or datetime) into a UTC-aware datetime.

    Naive values are assumed UTC; unparseable values return None.
    """
    if not value:
        return None
    try:
        if isinstance(value, datetime):
            parsed = value
        else:
            text = value[:-1] + "+00:00" if value.endswith("Z") else value
            parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (ValueError, AttributeError, TypeError) as e:
        logger.warning("Failed to parse timestamp %r: %s", value, e)
        return None


def age_days(settled_at: Union[str, datetime, None], now: Optional[datetime] = None) -> Optional[float]:
    """Age in (fractional) days; None when the timestamp is missing or bad. Never negative."""
    ts = parse_timestamp(settled_at)
    if ts is None:
        return None
    now = parse_timestamp(now) or utc_now()
    return max(0.0, (now - ts).total_seconds() / 86400.0)


def format_as_of_et() -> str:
    """ISO timestamp in ET, second precision (for API envelopes)."""
    return now_et().replace(microsecond=0).isoformat()


__all__ = [
    'ET',
    'now_et',
    'utc_now',
    'period_key',
    'period_bounds_utc',
    'parse_timestamp',
    'age_days',
    'format_as_of_et',
]
