import calendar
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


class PresetKind(str, Enum):
    monthly = "monthly"
    yearly = "yearly"
    custom = "custom"


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime


def local_now() -> datetime:
    """Naive wall-clock time in the configured timezone."""
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min)


def _day_end(d: date) -> datetime:
    return datetime.combine(d, time.max)


def monthly_preset(year: int, month: int) -> DateRange:
    last_day = calendar.monthrange(year, month)[1]
    return DateRange(
        _day_start(date(year, month, 1)), _day_end(date(year, month, last_day))
    )


def yearly_preset(year: int) -> DateRange:
    return DateRange(_day_start(date(year, 1, 1)), _day_end(date(year, 12, 31)))


def current_month_preset(today: Optional[date] = None) -> DateRange:
    today = today or local_today()
    return monthly_preset(today.year, today.month)


def current_year_preset(today: Optional[date] = None) -> DateRange:
    today = today or local_today()
    return yearly_preset(today.year)


def next_month_preset(today: Optional[date] = None) -> DateRange:
    today = today or local_today()
    if today.month == 12:
        return monthly_preset(today.year + 1, 1)
    return monthly_preset(today.year, today.month + 1)


def next_year_preset(today: Optional[date] = None) -> DateRange:
    today = today or local_today()
    return yearly_preset(today.year + 1)


def _short_date(value: datetime) -> str:
    # "Jan 5, 2025"
    return f"{calendar.month_abbr[value.month]} {value.day}, {value.year}"


def format_preset_name(kind: PresetKind, date_range: DateRange) -> str:
    if kind == PresetKind.monthly:
        start = date_range.start
        return f"{calendar.month_name[start.month]} {start.year}"
    if kind == PresetKind.yearly:
        return str(date_range.start.year)
    return f"{_short_date(date_range.start)} - {_short_date(date_range.end)}"


def resolve_preset(
    kind: PresetKind,
    *,
    year: Optional[int] = None,
    month: Optional[int] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    today: Optional[date] = None,
) -> tuple[DateRange, str]:
    today = today or local_today()
    if kind == PresetKind.custom:
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        date_range = DateRange(_day_start(start_date), _day_end(end_date))
    elif kind == PresetKind.yearly:
        date_range = yearly_preset(year or today.year)
    else:
        if year is None and month is None:
            date_range = current_month_preset(today)
        else:
            date_range = monthly_preset(year or today.year, month or today.month)
    return date_range, format_preset_name(kind, date_range)
