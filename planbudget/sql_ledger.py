from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Iterator, List, Mapping, Optional

from sqlalchemy import and_, insert, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from planbudget.errors import ConflictError, TransientStoreError
from planbudget.ledger import validate_match_fields
from planbudget.models import FixedItem, Transaction
from planbudget.schema import fixed_items, generation_markers, transactions

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = (
    "user_id",
    "title",
    "amount",
    "date",
    "type",
    "category_id",
    "asset_id",
    "to_asset_id",
    "budget_type",
    "note",
    "is_installment",
    "total_term",
    "current_term",
    "installment_day",
    "installment_id",
    "original_amount",
    "include_in_living_expense",
    "fixed_item_id",
)


@contextmanager
def store_connection(engine: Engine) -> Iterator[Connection]:
    """Open a transaction, reporting connectivity failures as transient."""
    try:
        with engine.begin() as conn:
            yield conn
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.warning("Store operation failed: %s", exc)
        raise TransientStoreError("Ledger store unavailable") from exc


def row_to_transaction(row: Mapping[str, Any]) -> Transaction:
    return Transaction(
        id=row["id"],
        created_at=row["created_at"],
        **{name: row[name] for name in TRANSACTION_COLUMNS},
    )


def row_to_fixed_item(row: Mapping[str, Any]) -> FixedItem:
    return FixedItem(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        amount=row["amount"],
        day=row["day"],
        type=row["type"],
        category_id=row["category_id"],
        asset_id=row["asset_id"],
        budget_type=row["budget_type"],
        is_active=row["is_active"],
    )


@dataclass(frozen=True)
class SqlLedger:
    engine: Engine

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
        conditions = [transactions.c.user_id == user_id]
        if start_date is not None:
            conditions.append(transactions.c.date >= start_date)
        if end_date is not None:
            conditions.append(transactions.c.date <= end_date)
        if asset_id is not None:
            conditions.append(transactions.c.asset_id == asset_id)
        if to_asset_id is not None:
            conditions.append(transactions.c.to_asset_id == to_asset_id)
        if types is not None:
            conditions.append(transactions.c.type.in_(tuple(types)))
        if installment_id is not None:
            conditions.append(transactions.c.installment_id == installment_id)
        with store_connection(self.engine) as conn:
            rows = conn.execute(
                select(transactions)
                .where(and_(*conditions))
                .order_by(transactions.c.date.asc(), transactions.c.id.asc())
            ).mappings().all()
        return [row_to_transaction(row) for row in rows]

    def get_transaction(self, user_id: int, transaction_id: int) -> Optional[Transaction]:
        with store_connection(self.engine) as conn:
            row = conn.execute(
                select(transactions).where(
                    transactions.c.id == transaction_id,
                    transactions.c.user_id == user_id,
                )
            ).mappings().first()
        return row_to_transaction(row) if row else None

    def insert_transaction(self, txn: Transaction) -> Transaction:
        values = {name: getattr(txn, name) for name in TRANSACTION_COLUMNS}
        try:
            with store_connection(self.engine) as conn:
                row = conn.execute(
                    insert(transactions).values(**values).returning(*transactions.c)
                ).mappings().first()
        except IntegrityError as exc:
            logger.warning("Transaction insert rejected for user %s: %s", txn.user_id, exc)
            raise ConflictError("Transaction references missing or conflicting records.") from exc
        if not row:
            raise TransientStoreError("Insert returned no row.")
        return row_to_transaction(row)

    def transaction_exists(self, user_id: int, **match: Any) -> bool:
        validate_match_fields(match)
        conditions = [transactions.c.user_id == user_id]
        conditions.extend(transactions.c[name] == value for name, value in match.items())
        with store_connection(self.engine) as conn:
            found = conn.execute(
                select(transactions.c.id).where(and_(*conditions)).limit(1)
            ).first()
        return found is not None

    def list_installment_masters(self, user_id: int) -> List[Transaction]:
        with store_connection(self.engine) as conn:
            rows = conn.execute(
                select(transactions)
                .where(
                    transactions.c.user_id == user_id,
                    transactions.c.is_installment.is_(True),
                    transactions.c.installment_id.is_(None),
                )
                .order_by(transactions.c.date.asc(), transactions.c.id.asc())
            ).mappings().all()
        return [row_to_transaction(row) for row in rows]

    def delete_transactions_by_installment_id(self, master_id: int) -> int:
        with store_connection(self.engine) as conn:
            result = conn.execute(
                transactions.delete().where(transactions.c.installment_id == master_id)
            )
        return result.rowcount

    def delete_master(self, master_id: int) -> int:
        """Delete an installment master and its occurrences in one transaction."""
        with store_connection(self.engine) as conn:
            removed = conn.execute(
                transactions.delete().where(transactions.c.installment_id == master_id)
            ).rowcount
            conn.execute(transactions.delete().where(transactions.c.id == master_id))
        return removed

    def delete_transaction(self, transaction_id: int) -> bool:
        with store_connection(self.engine) as conn:
            result = conn.execute(
                transactions.delete().where(transactions.c.id == transaction_id)
            )
        return result.rowcount > 0

    def list_active_fixed_items(self, user_id: int) -> List[FixedItem]:
        with store_connection(self.engine) as conn:
            rows = conn.execute(
                select(fixed_items)
                .where(fixed_items.c.user_id == user_id, fixed_items.c.is_active.is_(True))
                .order_by(fixed_items.c.day.asc(), fixed_items.c.id.asc())
            ).mappings().all()
        return [row_to_fixed_item(row) for row in rows]


@dataclass(frozen=True)
class SqlMarkerStore:
    """Marker store sharing the ledger database.

    Writes with an existing key are ignored; concurrent writers produce the
    same marker.
    """

    engine: Engine

    def get_marker(self, key: str) -> Optional[datetime]:
        with store_connection(self.engine) as conn:
            return conn.execute(
                select(generation_markers.c.created_at).where(generation_markers.c.key == key)
            ).scalar_one_or_none()

    def set_marker(self, key: str, timestamp: datetime) -> None:
        try:
            with store_connection(self.engine) as conn:
                conn.execute(insert(generation_markers).values(key=key, created_at=timestamp))
        except IntegrityError:
            logger.debug("Marker %s already present", key)
