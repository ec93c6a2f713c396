from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from planbudget.errors import PlanBudgetError
from planbudget.idempotency_gate import GenerationDomain, IdempotencyGate
from planbudget.ledger import FixedItemSource, Ledger
from planbudget.models import (
    FixedItem,
    InstallmentMaster,
    RecurringTemplate,
    Transaction,
    TransactionType,
)
from planbudget.occurrence_scheduler import fixed_occurrence, installment_occurrence
from planbudget.period_calculator import (
    PeriodAnchor,
    current_period_anchor,
    validate_month_start_day,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    generated: int = 0
    skipped: int = 0
    failed: int = 0
    period_key: Optional[str] = None
    short_circuited: bool = False


@dataclass
class _Tally:
    generated: int = 0
    existing: int = 0
    failed: int = 0

    def result(self, period_key: str) -> GenerationResult:
        return GenerationResult(
            generated=self.generated,
            skipped=self.existing + self.failed,
            failed=self.failed,
            period_key=period_key,
        )


@dataclass
class GenerationEngine:
    """Materialises fixed-item and installment occurrences once per period.

    A batch first consults the idempotency gate; a marker for the period
    short-circuits without touching the ledger. Otherwise every due template
    is checked against the ledger and written only when no matching record
    exists. Per-template failures are logged and counted as skipped.
    """

    ledger: Ledger
    gate: IdempotencyGate
    fixed_item_source: Optional[FixedItemSource] = None
    today: Callable[[], date] = date.today
    now: Callable[[], datetime] = datetime.now

    def resolve_anchor(self, month_start_day: int) -> PeriodAnchor:
        validate_month_start_day(month_start_day)
        return current_period_anchor(self.today(), month_start_day)

    def should_generate(self, user_id: int, domain: str, period_key: str) -> bool:
        return not self.gate.has_marker(user_id, period_key, domain)

    def generate_fixed_occurrences(
        self,
        user_id: int,
        month_start_day: int,
        active_fixed_items: Optional[Iterable[FixedItem]] = None,
    ) -> GenerationResult:
        anchor = self.resolve_anchor(month_start_day)
        period_key = anchor.key(month_start_day)
        if not self.should_generate(user_id, GenerationDomain.FIXED, period_key):
            return GenerationResult(period_key=period_key, short_circuited=True)

        if active_fixed_items is None:
            active_fixed_items = self._fetch_fixed_items(user_id)

        tally = _Tally()
        for item in active_fixed_items:
            if not item.is_active or item.user_id != user_id:
                continue
            try:
                self._generate_fixed(item, anchor, month_start_day, tally)
            except PlanBudgetError as exc:
                tally.failed += 1
                logger.warning(
                    "Fixed item %s skipped for period %s: %s", item.id, period_key, exc
                )

        if tally.generated > 0:
            self.gate.set_marker(user_id, period_key, GenerationDomain.FIXED, self.now())
        logger.info(
            "Fixed generation for user %s period %s: generated=%d skipped=%d",
            user_id,
            period_key,
            tally.generated,
            tally.existing + tally.failed,
        )
        return tally.result(period_key)

    def generate_installment_occurrences(
        self, user_id: int, month_start_day: int
    ) -> GenerationResult:
        anchor = self.resolve_anchor(month_start_day)
        period_key = anchor.key(month_start_day)
        if not self.should_generate(user_id, GenerationDomain.INSTALLMENT, period_key):
            return GenerationResult(period_key=period_key, short_circuited=True)

        masters = self.ledger.list_installment_masters(user_id)

        tally = _Tally()
        for record in masters:
            try:
                master = InstallmentMaster.from_transaction(record)
                self._generate_installment(master, anchor, month_start_day, tally)
            except PlanBudgetError as exc:
                tally.failed += 1
                logger.warning(
                    "Installment master %s skipped for period %s: %s",
                    record.id,
                    period_key,
                    exc,
                )

        # Not-due masters are not counted; a period with nothing due or
        # everything already present is marked too. Failed writes are
        # reported in skipped but do not count toward marking: a period whose
        # due masters all failed stays unmarked so the next run retries them.
        if tally.generated > 0 or tally.failed == 0:
            self.gate.set_marker(
                user_id, period_key, GenerationDomain.INSTALLMENT, self.now()
            )
        logger.info(
            "Installment generation for user %s period %s: generated=%d skipped=%d",
            user_id,
            period_key,
            tally.generated,
            tally.existing + tally.failed,
        )
        return tally.result(period_key)

    def generate_all(self, user_id: int, month_start_day: int) -> dict[str, GenerationResult]:
        return {
            GenerationDomain.FIXED: self.generate_fixed_occurrences(user_id, month_start_day),
            GenerationDomain.INSTALLMENT: self.generate_installment_occurrences(
                user_id, month_start_day
            ),
        }

    def generate_for_template(
        self, template: RecurringTemplate, month_start_day: int
    ) -> GenerationResult:
        """Write the current-period occurrence of a single template.

        Used when a template is created after its period was already marked.
        The marker is neither read nor written; the ledger existence check
        keeps repeated calls from duplicating the occurrence.
        """
        anchor = self.resolve_anchor(month_start_day)
        period_key = anchor.key(month_start_day)
        tally = _Tally()
        try:
            if isinstance(template, InstallmentMaster):
                self._generate_installment(template, anchor, month_start_day, tally)
            elif template.is_active:
                self._generate_fixed(template, anchor, month_start_day, tally)
        except PlanBudgetError as exc:
            tally.failed += 1
            logger.warning("Template %s skipped for period %s: %s", template.id, period_key, exc)
        return tally.result(period_key)

    def _fetch_fixed_items(self, user_id: int) -> list[FixedItem]:
        if self.fixed_item_source is None:
            raise ValueError("No fixed items given and no fixed item source configured.")
        return self.fixed_item_source.list_active_fixed_items(user_id)

    def _generate_fixed(
        self, item: FixedItem, anchor: PeriodAnchor, month_start_day: int, tally: _Tally
    ) -> None:
        occurrence = fixed_occurrence(item, anchor, month_start_day)
        if self.ledger.transaction_exists(
            item.user_id,
            title=item.name,
            amount=occurrence.amount,
            date=occurrence.date,
            type=TransactionType.EXPENSE,
        ):
            tally.existing += 1
            return
        self.ledger.insert_transaction(
            Transaction(
                user_id=item.user_id,
                title=item.name,
                amount=occurrence.amount,
                date=occurrence.date,
                type=TransactionType.EXPENSE,
                category_id=item.category_id,
                asset_id=item.asset_id,
                budget_type=item.budget_type,
                include_in_living_expense=False,
                fixed_item_id=item.id,
            )
        )
        tally.generated += 1

    def _generate_installment(
        self,
        master: InstallmentMaster,
        anchor: PeriodAnchor,
        month_start_day: int,
        tally: _Tally,
    ) -> None:
        occurrence = installment_occurrence(master, anchor, month_start_day)
        if occurrence is None:
            return
        if self.ledger.transaction_exists(
            master.user_id, installment_id=master.id, date=occurrence.date
        ):
            tally.existing += 1
            return
        self.ledger.insert_transaction(
            Transaction(
                user_id=master.user_id,
                title=master.title,
                amount=occurrence.amount,
                date=occurrence.date,
                type=TransactionType.EXPENSE,
                category_id=master.category_id,
                asset_id=master.asset_id,
                budget_type=master.budget_type,
                note=master.note,
                is_installment=True,
                total_term=master.total_term,
                current_term=occurrence.term,
                installment_day=master.installment_day,
                installment_id=master.id,
                original_amount=master.original_amount,
                include_in_living_expense=master.include_in_living_expense,
            )
        )
        tally.generated += 1
