from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta

from planbudget.errors import ValidationError

MIN_MONTH_START_DAY = 1
MAX_MONTH_START_DAY = 28


@dataclass(frozen=True)
class PeriodWindow:
    start_date: date
    end_date: date

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date


@dataclass(frozen=True, order=True)
class PeriodAnchor:
    """Calendar year/month in which an accounting period starts."""

    year: int
    month: int

    def shift(self, months: int) -> "PeriodAnchor":
        year, month = shift_month(self.year, self.month, months)
        return PeriodAnchor(year=year, month=month)

    def months_since(self, other: "PeriodAnchor") -> int:
        return (self.year - other.year) * 12 + (self.month - other.month)

    def key(self, month_start_day: int) -> str:
        return period_key(self, month_start_day)


def validate_month_start_day(value: int) -> int:
    if value < MIN_MONTH_START_DAY or value > MAX_MONTH_START_DAY:
        raise ValidationError("Month start day must be between 1 and 28.")
    return value


def days_in_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def shift_month(year: int, month: int, months: int) -> tuple[int, int]:
    month_index = (year * 12 + month - 1) + months
    return month_index // 12, month_index % 12 + 1


def clamp_day_to_month(day: int, year: int, month: int) -> date:
    """Return ``day`` of the given month, pulled back to its last day if short."""
    if day < 1:
        raise ValidationError("Day of month must be at least 1.")
    return date(year, month, min(day, days_in_month(year, month)))


def window_for(year: int, month: int, month_start_day: int) -> PeriodWindow:
    validate_month_start_day(month_start_day)
    if month_start_day == 1:
        return PeriodWindow(
            start_date=date(year, month, 1),
            end_date=date(year, month, days_in_month(year, month)),
        )
    next_year, next_month = shift_month(year, month, 1)
    return PeriodWindow(
        start_date=date(year, month, month_start_day),
        end_date=date(next_year, next_month, month_start_day) - timedelta(days=1),
    )


def period_anchor_for(value: date, month_start_day: int) -> PeriodAnchor:
    validate_month_start_day(month_start_day)
    if month_start_day == 1 or value.day >= month_start_day:
        return PeriodAnchor(year=value.year, month=value.month)
    year, month = shift_month(value.year, value.month, -1)
    return PeriodAnchor(year=year, month=month)


def current_period_anchor(today: date, month_start_day: int) -> PeriodAnchor:
    """Anchor of the period that is open on ``today``.

    Both window lookups and generation marker keys go through this function.
    """
    return period_anchor_for(today, month_start_day)


def current_window(today: date, month_start_day: int) -> PeriodWindow:
    anchor = current_period_anchor(today, month_start_day)
    return window_for(anchor.year, anchor.month, month_start_day)


def relative_period(value: date, today: date, month_start_day: int) -> int:
    """Offset of the period holding ``value`` from the current one (0, -1, +1, ...)."""
    return period_anchor_for(value, month_start_day).months_since(
        current_period_anchor(today, month_start_day)
    )


def period_key(anchor: PeriodAnchor, month_start_day: int) -> str:
    return f"{anchor.year}-{anchor.month}-{month_start_day}"
