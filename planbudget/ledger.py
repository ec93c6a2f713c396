from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Protocol

from planbudget.errors import ValidationError
from planbudget.models import FixedItem, Transaction

MATCHABLE_FIELDS = {
    "title",
    "amount",
    "date",
    "type",
    "installment_id",
    "fixed_item_id",
    "asset_id",
}


class Ledger(Protocol):
    def query_transactions(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        *,
        asset_id: Optional[int] = None,
        to_asset_id: Optional[int] = None,
        types: Optional[Iterable[str]] = None,
        installment_id: Optional[int] = None,
    ) -> List[Transaction]: ...

    def insert_transaction(self, txn: Transaction) -> Transaction: ...

    def transaction_exists(self, user_id: int, **match: Any) -> bool: ...

    def list_installment_masters(self, user_id: int) -> List[Transaction]: ...

    def delete_transactions_by_installment_id(self, master_id: int) -> int: ...

    def delete_master(self, master_id: int) -> int: ...

    def delete_transaction(self, transaction_id: int) -> bool: ...


class FixedItemSource(Protocol):
    def list_active_fixed_items(self, user_id: int) -> List[FixedItem]: ...


def validate_match_fields(match: dict[str, Any]) -> None:
    unknown = set(match) - MATCHABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unsupported match fields: {', '.join(sorted(unknown))}")
    if not match:
        raise ValidationError("At least one match field is required.")


@dataclass
class InMemoryLedger:
    """Ledger and fixed-item source kept in process memory."""

    transactions: List[Transaction] = field(default_factory=list)
    fixed_items: List[FixedItem] = field(default_factory=list)
    _next_id: int = 1

    def query_transactions(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        *,
        asset_id: Optional[int] = None,
        to_asset_id: Optional[int] = None,
        types: Optional[Iterable[str]] = None,
        installment_id: Optional[int] = None,
    ) -> List[Transaction]:
        allowed_types = set(types) if types is not None else None
        matches = []
        for txn in self.transactions:
            if txn.user_id != user_id:
                continue
            if start_date is not None and txn.date < start_date:
                continue
            if end_date is not None and txn.date > end_date:
                continue
            if asset_id is not None and txn.asset_id != asset_id:
                continue
            if to_asset_id is not None and txn.to_asset_id != to_asset_id:
                continue
            if allowed_types is not None and txn.type not in allowed_types:
                continue
            if installment_id is not None and txn.installment_id != installment_id:
                continue
            matches.append(txn)
        return sorted(matches, key=lambda txn: (txn.date, txn.id or 0))

    def insert_transaction(self, txn: Transaction) -> Transaction:
        stored = replace(txn, id=self._next_id, created_at=txn.created_at or datetime.now())
        self._next_id += 1
        self.transactions.append(stored)
        return stored

    def transaction_exists(self, user_id: int, **match: Any) -> bool:
        validate_match_fields(match)
        return any(
            txn.user_id == user_id
            and all(getattr(txn, name) == value for name, value in match.items())
            for txn in self.transactions
        )

    def list_installment_masters(self, user_id: int) -> List[Transaction]:
        return [
            txn
            for txn in self.transactions
            if txn.user_id == user_id and txn.is_master
        ]

    def delete_transactions_by_installment_id(self, master_id: int) -> int:
        kept = [txn for txn in self.transactions if txn.installment_id != master_id]
        removed = len(self.transactions) - len(kept)
        self.transactions = kept
        return removed

    def delete_master(self, master_id: int) -> int:
        removed = self.delete_transactions_by_installment_id(master_id)
        self.delete_transaction(master_id)
        return removed

    def delete_transaction(self, transaction_id: int) -> bool:
        kept = [txn for txn in self.transactions if txn.id != transaction_id]
        removed = len(kept) != len(self.transactions)
        self.transactions = kept
        return removed

    def list_active_fixed_items(self, user_id: int) -> List[FixedItem]:
        return sorted(
            (item for item in self.fixed_items if item.user_id == user_id and item.is_active),
            key=lambda item: (item.day, item.id),
        )
