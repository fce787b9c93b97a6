"""
Period Model Module

Converts between "installments elapsed since start" and calendar dates for
daily and monthly loans. All calendar arithmetic in the system goes through
this module so that every caller counts days and months the same way.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Union
import calendar


class PeriodUnit(Enum):
    """How a loan's schedule is divided"""
    DAY = "daily"          # One installment every calendar day
    MONTH = "monthly"      # One installment every calendar month
    FIXED = "pending"      # Single lump target, no periodic installment

    @property
    def is_periodic(self) -> bool:
        return self in (PeriodUnit.DAY, PeriodUnit.MONTH)


DateLike = Union[date, datetime, str]


def to_date(value: DateLike) -> date:
    """
    Normalise a date-like value to a calendar date

    Time components are dropped, never compared. Accepts ``date``,
    ``datetime`` and ISO strings ("2024-01-01", "2024-01-01T10:30:00Z").

    Raises:
        ValueError: If the value cannot be read as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            raise ValueError(f"Cannot read '{value}' as a date")
    raise ValueError(f"Cannot read {value!r} as a date")


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def date_after_periods(anchor_date: date, period_count: int, unit: PeriodUnit) -> date:
    """
    Move a date forward (or backward, for negative counts) by whole periods

    Args:
        anchor_date: Date to move from
        period_count: Number of periods to move
        unit: DAY or MONTH

    Returns:
        The shifted calendar date
    """
    if unit == PeriodUnit.DAY:
        return anchor_date + timedelta(days=period_count)
    elif unit == PeriodUnit.MONTH:
        return add_months(anchor_date, period_count)
    else:
        raise ValueError(f"{unit.name} loans have no periodic schedule")


def periods_elapsed(start_date: date, as_of_date: date, unit: PeriodUnit) -> int:
    """
    Count installments that have fallen due from start_date up to as_of_date

    The first installment is due on the start date itself, so a loan that
    starts today has one period elapsed. Monthly periods fall due on the
    start date's day-of-month (clamped in shorter months).

    Returns:
        Number of elapsed periods, 0 when the loan has not started yet
    """
    if as_of_date < start_date:
        return 0

    if unit == PeriodUnit.DAY:
        return (as_of_date - start_date).days + 1
    elif unit == PeriodUnit.MONTH:
        months = (as_of_date.year - start_date.year) * 12 + (as_of_date.month - start_date.month)
        if as_of_date >= add_months(start_date, months):
            months += 1
        return max(months, 0)
    else:
        raise ValueError(f"{unit.name} loans have no periodic schedule")
