import unittest
from datetime import date, datetime
from decimal import Decimal

from planbudget.errors import TransientStoreError
from planbudget.generation_engine import GenerationEngine
from planbudget.idempotency_gate import GenerationDomain, IdempotencyGate, InMemoryMarkerStore
from planbudget.ledger import InMemoryLedger
from planbudget.models import EntryKind, FixedItem, InstallmentMaster, Transaction


class FailingInsertLedger(InMemoryLedger):
    def insert_transaction(self, txn: Transaction) -> Transaction:
        raise TransientStoreError("write refused")


class UnavailableFixedItems:
    def list_active_fixed_items(self, user_id: int) -> list:
        raise TransientStoreError("fixed items unavailable")


def fixed_item(item_id: int, name: str, amount: str, day: int, **overrides) -> FixedItem:
    return FixedItem(
        id=item_id, user_id=1, name=name, amount=Decimal(amount), day=day, **overrides
    )


def master_record(**overrides) -> Transaction:
    values = dict(
        user_id=1,
        title="Laptop",
        amount=Decimal("120000"),
        date=date(2024, 1, 15),
        type="expense",
        is_installment=True,
        total_term=12,
        current_term=1,
        installment_day=15,
        original_amount=Decimal("120000"),
    )
    values.update(overrides)
    return Transaction(**values)


class GenerationEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.ledger = InMemoryLedger()
        self.store = InMemoryMarkerStore()
        self.gate = IdempotencyGate(self.store)

    def make_engine(self, today: date, ledger=None, fixed_item_source=None) -> GenerationEngine:
        ledger = ledger or self.ledger
        return GenerationEngine(
            ledger=ledger,
            gate=self.gate,
            fixed_item_source=fixed_item_source or ledger,
            today=lambda: today,
            now=lambda: datetime(2024, 3, 10, 9, 0),
        )

    def test_fixed_generation_runs_once_per_period(self) -> None:
        self.ledger.fixed_items = [
            fixed_item(1, "Rent", "500000", 25),
            fixed_item(2, "Phone", "55000", 3),
        ]
        engine = self.make_engine(date(2024, 3, 10))

        first = engine.generate_fixed_occurrences(1, 1)
        second = engine.generate_fixed_occurrences(1, 1)

        self.assertEqual((first.generated, first.skipped), (2, 0))
        self.assertEqual(first.period_key, "2024-3-1")
        self.assertTrue(second.short_circuited)
        self.assertEqual((second.generated, second.skipped), (0, 0))
        self.assertEqual(len(self.ledger.transactions), 2)
        self.assertTrue(self.gate.has_marker(1, "2024-3-1", GenerationDomain.FIXED))

    def test_fixed_occurrences_are_linked_and_excluded_from_living_expense(self) -> None:
        self.ledger.fixed_items = [fixed_item(4, "Insurance", "80000", 31)]

        self.make_engine(date(2023, 2, 10)).generate_fixed_occurrences(1, 1)

        [created] = self.ledger.transactions
        self.assertEqual(created.date, date(2023, 2, 28))
        self.assertEqual(created.fixed_item_id, 4)
        self.assertEqual(created.kind, EntryKind.FIXED_OCCURRENCE)
        self.assertFalse(created.include_in_living_expense)

    def test_lost_marker_falls_back_to_existence_check(self) -> None:
        self.ledger.fixed_items = [
            fixed_item(1, "Rent", "500000", 25),
            fixed_item(2, "Phone", "55000", 3),
        ]
        engine = self.make_engine(date(2024, 3, 10))
        engine.generate_fixed_occurrences(1, 1)
        self.store.clear()

        rerun = engine.generate_fixed_occurrences(1, 1)

        self.assertEqual((rerun.generated, rerun.skipped), (0, 2))
        self.assertEqual(len(self.ledger.transactions), 2)
        self.assertFalse(self.gate.has_marker(1, "2024-3-1", GenerationDomain.FIXED))

    def test_inactive_items_are_ignored(self) -> None:
        self.ledger.fixed_items = [fixed_item(1, "Old gym", "30000", 5, is_active=False)]
        engine = self.make_engine(date(2024, 3, 10))

        result = engine.generate_fixed_occurrences(
            1, 1, active_fixed_items=self.ledger.fixed_items
        )

        self.assertEqual((result.generated, result.skipped), (0, 0))
        self.assertEqual(self.ledger.transactions, [])

    def test_failing_item_does_not_stop_the_batch(self) -> None:
        self.ledger.fixed_items = [
            fixed_item(1, "Broken", "0", 5),
            fixed_item(2, "Phone", "55000", 3),
        ]

        result = self.make_engine(date(2024, 3, 10)).generate_fixed_occurrences(1, 1)

        self.assertEqual((result.generated, result.skipped, result.failed), (1, 1, 1))
        self.assertEqual([txn.title for txn in self.ledger.transactions], ["Phone"])

    def test_fixed_item_fetch_failure_propagates_without_marker(self) -> None:
        engine = self.make_engine(date(2024, 3, 10), fixed_item_source=UnavailableFixedItems())

        with self.assertRaises(TransientStoreError):
            engine.generate_fixed_occurrences(1, 1)
        self.assertFalse(self.gate.has_marker(1, "2024-3-1", GenerationDomain.FIXED))

    def test_installment_terms_advance_each_period(self) -> None:
        master = self.ledger.insert_transaction(master_record())

        for month in (1, 2, 3):
            self.make_engine(date(2024, month, 20)).generate_installment_occurrences(1, 1)

        occurrences = [txn for txn in self.ledger.transactions if txn.installment_id == master.id]
        self.assertEqual(
            [(txn.current_term, txn.date, txn.amount) for txn in occurrences],
            [
                (1, date(2024, 1, 15), Decimal("10000")),
                (2, date(2024, 2, 15), Decimal("10000")),
                (3, date(2024, 3, 15), Decimal("10000")),
            ],
        )
        self.assertTrue(all(txn.kind == EntryKind.INSTALLMENT_OCCURRENCE for txn in occurrences))
        self.assertTrue(all(txn.original_amount == Decimal("120000") for txn in occurrences))

    def test_uneven_installment_rounds_every_term_equally(self) -> None:
        self.ledger.insert_transaction(
            master_record(amount=Decimal("100000"), original_amount=Decimal("100000"), total_term=3)
        )

        for month in (1, 2, 3, 4):
            self.make_engine(date(2024, month, 20)).generate_installment_occurrences(1, 1)

        occurrences = [txn for txn in self.ledger.transactions if not txn.is_master]
        self.assertEqual(
            [(txn.current_term, txn.amount) for txn in occurrences],
            [(1, Decimal("33333")), (2, Decimal("33333")), (3, Decimal("33333"))],
        )

    def test_installment_occurrence_inherits_living_expense_flag(self) -> None:
        self.ledger.insert_transaction(master_record(include_in_living_expense=False))

        self.make_engine(date(2024, 2, 1)).generate_installment_occurrences(1, 1)

        occurrence = self.ledger.transactions[-1]
        self.assertEqual(occurrence.current_term, 2)
        self.assertFalse(occurrence.include_in_living_expense)

    def test_installment_period_with_nothing_due_is_marked(self) -> None:
        self.ledger.insert_transaction(master_record(date=date(2025, 1, 15)))

        result = self.make_engine(date(2024, 3, 10)).generate_installment_occurrences(1, 1)

        self.assertEqual((result.generated, result.skipped), (0, 0))
        self.assertTrue(self.gate.has_marker(1, "2024-3-1", GenerationDomain.INSTALLMENT))

    def test_existing_installment_occurrence_is_skipped_and_marked(self) -> None:
        master = self.ledger.insert_transaction(master_record())
        self.ledger.insert_transaction(
            master_record(
                date=date(2024, 3, 15),
                amount=Decimal("10000"),
                current_term=3,
                installment_id=master.id,
            )
        )

        result = self.make_engine(date(2024, 3, 10)).generate_installment_occurrences(1, 1)

        self.assertEqual((result.generated, result.skipped), (0, 1))
        self.assertTrue(self.gate.has_marker(1, "2024-3-1", GenerationDomain.INSTALLMENT))

    def test_failed_installment_write_keeps_period_open(self) -> None:
        ledger = FailingInsertLedger()
        InMemoryLedger.insert_transaction(ledger, master_record())

        result = self.make_engine(date(2024, 3, 10), ledger=ledger).generate_installment_occurrences(1, 1)

        self.assertEqual((result.generated, result.skipped, result.failed), (0, 1, 1))
        self.assertFalse(self.gate.has_marker(1, "2024-3-1", GenerationDomain.INSTALLMENT))

    def test_concurrent_runs_without_shared_marker_do_not_duplicate(self) -> None:
        self.ledger.fixed_items = [fixed_item(1, "Rent", "500000", 25)]
        first = self.make_engine(date(2024, 3, 10))
        other_gate = IdempotencyGate(InMemoryMarkerStore())
        second = GenerationEngine(
            ledger=self.ledger,
            gate=other_gate,
            fixed_item_source=self.ledger,
            today=lambda: date(2024, 3, 10),
        )

        self.assertEqual(first.generate_fixed_occurrences(1, 1).generated, 1)
        self.assertEqual(second.generate_fixed_occurrences(1, 1).generated, 0)
        self.assertEqual(len(self.ledger.transactions), 1)

    def test_generate_for_template_ignores_marker(self) -> None:
        engine = self.make_engine(date(2024, 3, 10))
        engine.generate_installment_occurrences(1, 1)
        record = self.ledger.insert_transaction(master_record(date=date(2024, 3, 2), installment_day=2))

        result = engine.generate_for_template(InstallmentMaster.from_transaction(record), 1)
        repeat = engine.generate_for_template(InstallmentMaster.from_transaction(record), 1)

        self.assertEqual(result.generated, 1)
        self.assertEqual((repeat.generated, repeat.skipped), (0, 1))

    def test_generate_all_uses_month_start_day_in_key(self) -> None:
        self.ledger.fixed_items = [fixed_item(1, "Rent", "500000", 3)]
        self.ledger.insert_transaction(master_record(date=date(2024, 2, 26), installment_day=26))

        results = self.make_engine(date(2024, 3, 10)).generate_all(1, 25)

        self.assertEqual(results[GenerationDomain.FIXED].period_key, "2024-2-25")
        self.assertEqual(results[GenerationDomain.FIXED].generated, 1)
        self.assertEqual(results[GenerationDomain.INSTALLMENT].generated, 1)
        dates = sorted(txn.date for txn in self.ledger.transactions if not txn.is_master)
        self.assertEqual(dates, [date(2024, 2, 26), date(2024, 3, 3)])


if __name__ == "__main__":
    unittest.main()
