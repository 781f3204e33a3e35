import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


MONTH_KEY_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
YEAR_RE = re.compile(r"(20\d\d)")


@dataclass(frozen=True)
class Period:
    """Half-open date range ``[start, end)``."""

    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value < self.end


def today_local() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def month_start(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, count: int) -> date:
    """Shift the first day of ``value``'s month by ``count`` months."""
    index = value.year * 12 + (value.month - 1) + count
    return date(index // 12, index % 12 + 1, 1)


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(key: str) -> date:
    match = MONTH_KEY_RE.match((key or "").strip())
    if not match:
        raise ValueError("Invalid month format. Use YYYY-MM.")
    return date(int(match.group(1)), int(match.group(2)), 1)


def month_period(start: date) -> Period:
    first = month_start(start)
    return Period(first, add_months(first, 1))


def extract_month_period(text: str, *, today: Optional[date] = None) -> Optional[Period]:
    """Find a month reference such as "June 2023" in free text.

    The first month name (in calendar order) that appears anywhere in the text
    wins. A 20xx year is used when present, otherwise the current year. Returns
    ``None`` when no month name is mentioned.
    """
    haystack = (text or "").lower()
    target_month: Optional[int] = None
    for number in range(1, 13):
        name = calendar.month_name[number]
        if name and name.lower() in haystack:
            target_month = number
            break
    if target_month is None:
        return None

    today = today or today_local()
    year_match = YEAR_RE.search(text)
    year = int(year_match.group(1)) if year_match else today.year
    return month_period(date(year, target_month, 1))
