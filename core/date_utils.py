# core/date_utils.py
"""
Calendar helpers shared by the intent classifier, the stage machine and the
flight search tool. All functions work on the local calendar; no timezone
conversion is ever applied.
"""

from datetime import date, datetime, timedelta
from typing import Optional, Tuple, Union

import dateutil.parser
from dateutil.relativedelta import relativedelta

DateLike = Union[date, datetime, str]


def format_date(d: Union[date, datetime]) -> str:
    """Render a date as zero-padded YYYY-MM-DD from its local calendar fields."""
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def today() -> date:
    return datetime.now().date()


def tomorrow(now: Optional[date] = None) -> date:
    return (now or today()) + timedelta(days=1)


def parse_date(value: Optional[DateLike]) -> Optional[date]:
    """
    Best-effort conversion to a date.

    Strict ISO (YYYY-MM-DD) is tried first, then a lenient dateutil parse
    so LLM output like "2025-3-7" or "March 7, 2025" still works.
    Returns None if nothing sensible can be extracted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return dateutil.parser.parse(text).date()
    except (ValueError, OverflowError):
        return None


def is_future_date(value: Optional[DateLike], now: Optional[date] = None) -> bool:
    """True only when `value` parses and falls strictly after today."""
    parsed = parse_date(value)
    if parsed is None:
        return False
    return parsed > (now or today())


def roll_forward(d: date, now: Optional[date] = None) -> Tuple[date, int]:
    """
    Advance the year of `d` until it is strictly in the future.

    Month and day are preserved (Feb 29 clamps to Feb 28 in non-leap years).
    Returns the new date and the number of years added.
    """
    now = now or today()
    years = 0
    rolled = d
    while rolled <= now:
        years += 1
        rolled = d + relativedelta(years=years)
    return rolled, years
