"""
Helper Functions

This module contains utility functions used throughout the application.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Optional, Tuple

from dateutil import parser as dtparser

# Inclusive end of a calendar day, millisecond precision
END_OF_DAY = time(23, 59, 59, 999000)


def parse_ts(x: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime"""
    if not x:
        return None
    try:
        dt = dtparser.isoparse(str(x))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def get_nested(d: Any, path: Tuple[str, ...]) -> Any:
    """Safely read nested dict keys"""
    cur: Any = d
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            return None
        cur = cur[k]
    return cur


def day_start(d: date) -> datetime:
    """00:00:00.000 UTC of the given day"""
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def day_end(d: date) -> datetime:
    """23:59:59.999 UTC of the given day"""
    return datetime.combine(d, END_OF_DAY, tzinfo=timezone.utc)


def percent(done: int, total: int) -> int:
    """Whole-number progress percentage, 100 when there is nothing to do"""
    if total <= 0:
        return 100
    return min(100, round(done / total * 100))

