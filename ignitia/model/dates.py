"""
Calendar helpers used to classify assignments.

Every helper takes an optional reference ``now`` (datetime or date). The
time of day is ignored: all results are local calendar dates.
"""
from datetime import date, datetime, timedelta
from typing import Optional, Union

Moment = Union[datetime, date]

# Parsed value of an empty or unrecognised date string.
ZERO_DATE = date.min

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")

_MONDAY = 1  # Sunday=0 numbering
_WEEK_BEGIN = -6
_DAYS_IN_WEEK = 7


def today(now: Optional[Moment] = None) -> date:
    if now is None:
        now = datetime.now()
    if isinstance(now, datetime):
        return now.date()
    return now


def in_days(days: int, now: Optional[Moment] = None) -> date:
    return today(now) + timedelta(days=days)


def ago(days: int, now: Optional[Moment] = None) -> date:
    return in_days(-days, now)


def tomorrow(now: Optional[Moment] = None) -> date:
    return in_days(1, now)


def yesterday(now: Optional[Moment] = None) -> date:
    return ago(1, now)


def this_week(now: Optional[Moment] = None) -> date:
    """Monday on or before today."""
    cur = today(now)
    weekday = cur.isoweekday() % 7
    offset = _MONDAY - weekday
    if offset > 0:
        offset = _WEEK_BEGIN
    return cur + timedelta(days=offset)


def next_week(now: Optional[Moment] = None) -> date:
    return this_week(now) + timedelta(days=_DAYS_IN_WEEK)


def parse_date(text: Optional[str]) -> date:
    """Parse YYYY-MM-DD or MM/DD/YYYY; anything else is ZERO_DATE."""
    if not text:
        return ZERO_DATE
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return ZERO_DATE


def format_date(text: Optional[str]) -> str:
    """Normalise a date string to YYYY-MM-DD, keeping empty as empty."""
    if not text:
        return ""
    parsed = parse_date(text)
    if parsed == ZERO_DATE:
        return text
    return parsed.isoformat()
