import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from billing.config import config


def local_today(tz_name: Optional[str] = None) -> date:
    """Current calendar day in the deployment's operational timezone."""
    return datetime.now(ZoneInfo(tz_name or config.TIMEZONE)).date()


def resolve_today(today: Optional[date]) -> date:
    return today if today is not None else local_today()


def previous_month(month: int, year: int) -> Tuple[int, int]:
    if month == 1:
        return 12, year - 1
    return month - 1, year


def next_month(month: int, year: int) -> Tuple[int, int]:
    if month == 12:
        return 1, year + 1
    return month + 1, year


def month_index(month: int, year: int) -> int:
    return year * 12 + (month - 1)


def add_months(d: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    idx = month_index(d.month, d.year) + months
    year, month0 = divmod(idx, 12)
    last_day = calendar.monthrange(year, month0 + 1)[1]
    return date(year, month0 + 1, min(d.day, last_day))


def period_end_for(start: date, months: int) -> date:
    """Inclusive end of a period covering ``months`` months from ``start``."""
    return add_months(start, months) - timedelta(days=1)
