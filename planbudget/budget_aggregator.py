from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional

from planbudget.models import (
    ZERO,
    BudgetType,
    BudgetTypeFilter,
    CategoryType,
    FixedItem,
    Transaction,
    TransactionType,
    coerce_amount,
)

WHOLE_UNIT = Decimal("1")


@dataclass(frozen=True)
class BudgetSummary:
    total_income: Decimal
    total_expense: Decimal
    fixed_expense: Decimal
    living_expense: Decimal
    personal_expense: Decimal
    joint_expense: Decimal
    budget: Decimal
    remaining: Decimal
    usage_rate: Decimal


@dataclass(frozen=True)
class CategoryExpense:
    category_id: Optional[int]
    amount: Decimal


@dataclass(frozen=True)
class DailyGroup:
    date: date
    transactions: List[Transaction] = field(default_factory=list)
    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO


def effective_amount(txn: Transaction) -> Decimal:
    """Per-term amount of an installment record carrying the full price.

    Occurrence records already store the per-term amount and are divided a
    second time here; only pass records known to be masters.
    """
    amount = coerce_amount(txn.amount)
    if txn.is_installment and txn.total_term and txn.total_term > 0:
        return (amount / Decimal(txn.total_term)).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)
    return amount


def included_in_expense(txn: Transaction) -> bool:
    if txn.type != TransactionType.EXPENSE or txn.is_master:
        return False
    if not txn.is_installment:
        return True
    return txn.include_in_living_expense


def filter_by_budget_type(
    transactions: Iterable[Transaction], budget_type_filter: str
) -> List[Transaction]:
    normalized = BudgetTypeFilter.validate(budget_type_filter)
    if normalized == BudgetTypeFilter.ALL:
        return list(transactions)
    return [txn for txn in transactions if txn.budget_type == normalized]


def living_budget(
    personal_budget: Decimal,
    joint_budget: Decimal,
    fixed_items: Iterable[FixedItem],
    budget_type_filter: str = BudgetTypeFilter.ALL,
) -> Decimal:
    """Monthly budget for the filter minus its active fixed-item total."""
    normalized = BudgetTypeFilter.validate(budget_type_filter)
    active = [item for item in fixed_items if item.is_active]
    if normalized == BudgetType.PERSONAL:
        base = coerce_amount(personal_budget)
    elif normalized == BudgetType.JOINT:
        base = coerce_amount(joint_budget)
    else:
        base = coerce_amount(personal_budget) + coerce_amount(joint_budget)
    fixed_total = sum(
        (
            coerce_amount(item.amount)
            for item in active
            if normalized == BudgetTypeFilter.ALL or item.budget_type == normalized
        ),
        ZERO,
    )
    return base - fixed_total


def summarize_budget(
    transactions: Iterable[Transaction],
    budget: Decimal,
    budget_type_filter: str = BudgetTypeFilter.ALL,
    category_types: Optional[Mapping[int, str]] = None,
) -> BudgetSummary:
    category_types = category_types or {}
    filtered = filter_by_budget_type(transactions, budget_type_filter)
    budget = coerce_amount(budget)

    total_income = ZERO
    total_expense = ZERO
    fixed_expense = ZERO
    living_expense = ZERO
    personal_expense = ZERO
    joint_expense = ZERO
    for txn in filtered:
        amount = coerce_amount(txn.amount)
        if txn.type == TransactionType.INCOME:
            total_income += amount
            continue
        if not included_in_expense(txn):
            continue
        total_expense += amount
        if txn.budget_type == BudgetType.JOINT:
            joint_expense += amount
        else:
            personal_expense += amount
        if _is_fixed(txn, category_types):
            fixed_expense += amount
        elif txn.include_in_living_expense:
            living_expense += amount

    return BudgetSummary(
        total_income=total_income,
        total_expense=total_expense,
        fixed_expense=fixed_expense,
        living_expense=living_expense,
        personal_expense=personal_expense,
        joint_expense=joint_expense,
        budget=budget,
        remaining=budget - living_expense,
        usage_rate=living_expense / budget if budget > ZERO else ZERO,
    )


def expense_by_category(
    transactions: Iterable[Transaction],
    category_types: Optional[Mapping[int, str]] = None,
) -> List[CategoryExpense]:
    category_types = category_types or {}
    totals: Dict[Optional[int], Decimal] = {}
    for txn in transactions:
        if not included_in_expense(txn) or _is_fixed(txn, category_types):
            continue
        if not txn.include_in_living_expense:
            continue
        totals[txn.category_id] = totals.get(txn.category_id, ZERO) + coerce_amount(txn.amount)
    return sorted(
        (CategoryExpense(category_id=key, amount=value) for key, value in totals.items()),
        key=lambda entry: entry.amount,
        reverse=True,
    )


def group_by_day(transactions: Iterable[Transaction]) -> List[DailyGroup]:
    buckets: Dict[date, List[Transaction]] = {}
    for txn in transactions:
        buckets.setdefault(txn.date, []).append(txn)
    groups: List[DailyGroup] = []
    for day in sorted(buckets, reverse=True):
        day_transactions = buckets[day]
        groups.append(
            DailyGroup(
                date=day,
                transactions=day_transactions,
                total_income=_sum_type(day_transactions, TransactionType.INCOME),
                total_expense=sum(
                    (coerce_amount(txn.amount) for txn in day_transactions if included_in_expense(txn)),
                    ZERO,
                ),
            )
        )
    return groups


def monthly_installment_burden(masters: Iterable[Transaction]) -> Decimal:
    return sum((effective_amount(txn) for txn in masters if txn.is_master), ZERO)


def _is_fixed(txn: Transaction, category_types: Mapping[int, str]) -> bool:
    if txn.category_id is None:
        return False
    return category_types.get(txn.category_id) == CategoryType.FIXED


def _sum_type(transactions: Iterable[Transaction], txn_type: str) -> Decimal:
    total = ZERO
    for txn in transactions:
        if txn.type != txn_type:
            continue
        total += coerce_amount(txn.amount)
    return total
