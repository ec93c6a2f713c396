from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from planbudget.errors import ValidationError

ZERO = Decimal("0")


class TransactionType:
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    values = {INCOME, EXPENSE, TRANSFER}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Invalid transaction type.")
        return normalized


class BudgetType:
    PERSONAL = "personal"
    JOINT = "joint"
    values = {PERSONAL, JOINT}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Invalid budget type.")
        return normalized


class BudgetTypeFilter:
    ALL = "all"
    values = {ALL, BudgetType.PERSONAL, BudgetType.JOINT}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Budget filter must be all, personal, or joint.")
        return normalized


class CategoryType:
    INCOME = "income"
    EXPENSE = "expense"
    FIXED = "fixed"
    values = {INCOME, EXPENSE, FIXED}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Invalid category type.")
        return normalized


class AssetType:
    CARD = "card"
    values = {
        "bank",
        CARD,
        "cash",
        "loan",
        "insurance",
        "investment",
        "savings",
        "emoney",
        "point",
        "other",
    }

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Invalid asset type.")
        return normalized


class FixedItemType:
    FIXED = "fixed"
    VARIABLE = "variable"
    values = {FIXED, VARIABLE}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Invalid fixed item type.")
        return normalized


class EntryKind:
    PLAIN = "plain"
    FIXED_OCCURRENCE = "fixed_occurrence"
    INSTALLMENT_MASTER = "installment_master"
    INSTALLMENT_OCCURRENCE = "installment_occurrence"


@dataclass(frozen=True)
class Transaction:
    user_id: int
    title: str
    amount: Decimal
    date: date
    type: str
    id: Optional[int] = None
    category_id: Optional[int] = None
    asset_id: Optional[int] = None
    to_asset_id: Optional[int] = None
    budget_type: str = BudgetType.PERSONAL
    note: Optional[str] = None
    is_installment: bool = False
    total_term: Optional[int] = None
    current_term: Optional[int] = None
    installment_day: Optional[int] = None
    installment_id: Optional[int] = None
    original_amount: Optional[Decimal] = None
    include_in_living_expense: bool = True
    fixed_item_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def kind(self) -> str:
        if self.installment_id is not None:
            return EntryKind.INSTALLMENT_OCCURRENCE
        if self.is_installment:
            return EntryKind.INSTALLMENT_MASTER
        if self.fixed_item_id is not None:
            return EntryKind.FIXED_OCCURRENCE
        return EntryKind.PLAIN

    @property
    def is_master(self) -> bool:
        return self.kind == EntryKind.INSTALLMENT_MASTER


@dataclass(frozen=True)
class FixedItem:
    id: int
    user_id: int
    name: str
    amount: Decimal
    day: int
    type: str = FixedItemType.FIXED
    category_id: Optional[int] = None
    asset_id: Optional[int] = None
    budget_type: str = BudgetType.PERSONAL
    is_active: bool = True


@dataclass(frozen=True)
class InstallmentMaster:
    """The original installment purchase.

    ``start_date`` is the master record's own date; ``current_term`` is the
    term that date represents (a purchase entered mid-way through its plan
    starts above 1).
    """

    id: int
    user_id: int
    title: str
    original_amount: Decimal
    start_date: date
    total_term: int
    current_term: int
    installment_day: int
    include_in_living_expense: bool = True
    category_id: Optional[int] = None
    asset_id: Optional[int] = None
    budget_type: str = BudgetType.PERSONAL
    note: Optional[str] = None

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "InstallmentMaster":
        if txn.kind != EntryKind.INSTALLMENT_MASTER:
            raise ValidationError("Transaction is not an installment master.")
        if txn.id is None:
            raise ValidationError("Installment master must be persisted.")
        if not txn.total_term or txn.total_term < 1:
            raise ValidationError("Installment total term must be at least 1.")
        current_term = txn.current_term or 1
        if current_term < 1 or current_term > txn.total_term:
            raise ValidationError("Installment current term is out of range.")
        return cls(
            id=txn.id,
            user_id=txn.user_id,
            title=txn.title,
            original_amount=txn.original_amount if txn.original_amount is not None else txn.amount,
            start_date=txn.date,
            total_term=txn.total_term,
            current_term=current_term,
            installment_day=txn.installment_day or txn.date.day,
            include_in_living_expense=txn.include_in_living_expense,
            category_id=txn.category_id,
            asset_id=txn.asset_id,
            budget_type=txn.budget_type,
            note=txn.note,
        )


RecurringTemplate = Union[FixedItem, InstallmentMaster]


@dataclass(frozen=True)
class Asset:
    id: int
    user_id: int
    name: str
    type: str
    initial_balance: Decimal = ZERO
    settlement_day: Optional[int] = None
    billing_day: Optional[int] = None


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
