# settlement_system/utils/weeks.py
"""
ISO week helpers. Week ids look like "2025-W02"; weeks run Monday to Sunday.
"""
from datetime import date, datetime, timedelta
from typing import Tuple, Union
import re

WEEK_ID_PATTERN = re.compile(r"^(\d{4})-W(\d{1,2})$")


def parseWeekId(weekId: str) -> Tuple[int, int]:
    match = WEEK_ID_PATTERN.match((weekId or "").strip())
    if not match:
        raise ValueError(f"Invalid week id: {weekId!r} (expected YYYY-Www)")
    year, week = int(match.group(1)), int(match.group(2))
    # fromisocalendar rejects week 53 in 52-week years
    date.fromisocalendar(year, week, 1)
    return year, week


def weekBounds(weekId: str) -> Tuple[date, date]:
    """Return (monday, sunday) of the given ISO week."""
    year, week = parseWeekId(weekId)
    monday = date.fromisocalendar(year, week, 1)
    return monday, monday + timedelta(days=6)


def weekIdFor(day: Union[date, datetime]) -> str:
    if isinstance(day, datetime):
        day = day.date()
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def toDate(value: Union[date, datetime, str, None]):
    """Coerce a stored date/datetime/ISO string to a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)).date()
