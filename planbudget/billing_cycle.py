from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from planbudget.errors import ValidationError
from planbudget.ledger import Ledger
from planbudget.models import ZERO, Asset, Transaction, TransactionType, coerce_amount
from planbudget.period_calculator import PeriodWindow, clamp_day_to_month, shift_month


@dataclass(frozen=True)
class BillingAmounts:
    current_billing: Decimal
    next_billing: Decimal
    billing_period: PeriodWindow
    unbilled_period: Optional[PeriodWindow] = None


def billing_amounts(
    ledger: Ledger,
    asset: Asset,
    today: date,
    settlement_day: Optional[int] = None,
    billing_day: Optional[int] = None,
) -> BillingAmounts:
    """Amount due this cycle and amount accruing for the next one.

    The billing period runs from last month's settlement day to the day
    before this month's; spend since this month's settlement day accrues
    toward the next bill. Transfers into the card pay down the current bill
    only. Both figures floor at zero.
    """
    settlement_day = settlement_day if settlement_day is not None else asset.settlement_day
    billing_day = billing_day if billing_day is not None else asset.billing_day
    if settlement_day is None or billing_day is None:
        raise ValidationError("Card asset requires settlement and billing days.")
    _validate_day(settlement_day, "Settlement day")
    _validate_day(billing_day, "Billing day")

    this_settlement = clamp_day_to_month(settlement_day, today.year, today.month)
    last_year, last_month = shift_month(today.year, today.month, -1)
    billing_period = PeriodWindow(
        start_date=clamp_day_to_month(settlement_day, last_year, last_month),
        end_date=this_settlement - timedelta(days=1),
    )
    this_billing = clamp_day_to_month(billing_day, today.year, today.month)
    is_after_settlement = today >= this_settlement
    transfer_end = min(today, today if is_after_settlement else this_billing)

    billed = _query(ledger, asset, billing_period.start_date, billing_period.end_date)
    transfers_in = ledger.query_transactions(
        asset.user_id,
        billing_period.start_date,
        transfer_end,
        to_asset_id=asset.id,
        types=(TransactionType.TRANSFER,),
    )
    current_billing = (
        _expense_sum(billed)
        - _sum_of_type(billed, TransactionType.INCOME)
        - _sum_of_type(transfers_in, TransactionType.TRANSFER)
    )

    if today < this_settlement:
        return BillingAmounts(
            current_billing=max(ZERO, current_billing),
            next_billing=ZERO,
            billing_period=billing_period,
        )

    unbilled_period = PeriodWindow(start_date=this_settlement, end_date=today)
    unbilled = _query(ledger, asset, unbilled_period.start_date, unbilled_period.end_date)
    next_billing = _expense_sum(unbilled) - _sum_of_type(unbilled, TransactionType.INCOME)
    return BillingAmounts(
        current_billing=max(ZERO, current_billing),
        next_billing=max(ZERO, next_billing),
        billing_period=billing_period,
        unbilled_period=unbilled_period,
    )


def _validate_day(value: int, label: str) -> None:
    if value < 1 or value > 31:
        raise ValidationError(f"{label} must be between 1 and 31.")


def _query(ledger: Ledger, asset: Asset, start_date: date, end_date: date) -> list[Transaction]:
    return ledger.query_transactions(
        asset.user_id,
        start_date,
        end_date,
        asset_id=asset.id,
        types=(TransactionType.EXPENSE, TransactionType.INCOME),
    )


def _expense_sum(transactions: Iterable[Transaction]) -> Decimal:
    total = ZERO
    for txn in transactions:
        if txn.type != TransactionType.EXPENSE or txn.is_master:
            continue
        total += coerce_amount(txn.amount)
    return total


def _sum_of_type(transactions: Iterable[Transaction], txn_type: str) -> Decimal:
    total = ZERO
    for txn in transactions:
        if txn.type != txn_type:
            continue
        total += coerce_amount(txn.amount)
    return total
