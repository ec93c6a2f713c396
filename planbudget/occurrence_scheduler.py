from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from planbudget.errors import ValidationError
from planbudget.models import FixedItem, InstallmentMaster, coerce_amount
from planbudget.period_calculator import (
    PeriodAnchor,
    clamp_day_to_month,
    period_anchor_for,
    validate_month_start_day,
)

NOT_DUE = None
WHOLE_UNIT = Decimal("1")


@dataclass(frozen=True)
class ScheduledOccurrence:
    template_id: int
    date: date
    amount: Decimal
    term: Optional[int] = None


def scheduled_date(day: int, anchor: PeriodAnchor, month_start_day: int) -> date:
    """Place a nominal day-of-month inside the period starting at ``anchor``.

    Days on or after the start day fall in the anchor month; earlier days
    belong to the tail of the period in the following month.
    """
    validate_month_start_day(month_start_day)
    if day < 1 or day > 31:
        raise ValidationError("Day of month must be between 1 and 31.")
    if month_start_day == 1 or day >= month_start_day:
        return clamp_day_to_month(day, anchor.year, anchor.month)
    following = anchor.shift(1)
    return clamp_day_to_month(day, following.year, following.month)


def due_date_in_period(item: FixedItem, anchor: PeriodAnchor, month_start_day: int) -> date:
    return scheduled_date(item.day, anchor, month_start_day)


def fixed_occurrence(
    item: FixedItem, anchor: PeriodAnchor, month_start_day: int
) -> ScheduledOccurrence:
    amount = coerce_amount(item.amount)
    if amount <= 0:
        raise ValidationError("Fixed item amount must be greater than zero.")
    return ScheduledOccurrence(
        template_id=item.id,
        date=due_date_in_period(item, anchor, month_start_day),
        amount=amount,
    )


def installment_amount(original_amount: Decimal | int | str, total_term: int) -> Decimal:
    """Equal per-term amount, rounded half-up to whole currency units."""
    if total_term < 1:
        raise ValidationError("Installment total term must be at least 1.")
    amount = coerce_amount(original_amount)
    if amount <= 0:
        raise ValidationError("Installment amount must be greater than zero.")
    return (amount / Decimal(total_term)).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def master_start_anchor(master: InstallmentMaster, month_start_day: int = 1) -> PeriodAnchor:
    return period_anchor_for(master.start_date, month_start_day)


def term_for_period(
    master: InstallmentMaster, anchor: PeriodAnchor, month_start_day: int = 1
) -> Optional[int]:
    """Term due in the period at ``anchor``, or ``NOT_DUE``.

    The master's own period carries ``master.current_term``; each later
    period advances the term by one.
    """
    month_diff = anchor.months_since(master_start_anchor(master, month_start_day))
    term = master.current_term + month_diff
    if term < 1 or term > master.total_term:
        return NOT_DUE
    return term


def installment_occurrence(
    master: InstallmentMaster, anchor: PeriodAnchor, month_start_day: int
) -> Optional[ScheduledOccurrence]:
    term = term_for_period(master, anchor, month_start_day)
    if term is NOT_DUE:
        return None
    return ScheduledOccurrence(
        template_id=master.id,
        date=scheduled_date(master.installment_day, anchor, month_start_day),
        amount=installment_amount(master.original_amount, master.total_term),
        term=term,
    )


def installment_occurrences_between(
    master: InstallmentMaster,
    range_start: date,
    range_end: date,
    month_start_day: int,
) -> List[ScheduledOccurrence]:
    if range_start > range_end:
        raise ValidationError("range_start must be on or before range_end.")
    start_anchor = master_start_anchor(master, month_start_day)
    occurrences: List[ScheduledOccurrence] = []
    for term in range(master.current_term, master.total_term + 1):
        anchor = start_anchor.shift(term - master.current_term)
        occurrence = installment_occurrence(master, anchor, month_start_day)
        if occurrence is None:
            continue
        if occurrence.date > range_end:
            break
        if occurrence.date >= range_start:
            occurrences.append(occurrence)
    return occurrences
