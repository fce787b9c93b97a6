"""
Test suite for the payment ledger

Tests the one-entry-per-loan-per-day rule: replace on re-record, clearing on
zero, idempotent re-submission, concurrent writers and the audit events each
mutation leaves behind.
"""

import pytest
import threading
import time
from decimal import Decimal
from datetime import date

from installment_book.storage import InMemoryStorage, SQLiteStorage
from installment_book.audit import AuditTrail, AuditEventType
from installment_book.ledger import PaymentLedger, LedgerEntry, entry_key
from installment_book.loans import LoanManager
from installment_book.periods import PeriodUnit


class TestPaymentLedger:
    """Test ledger mutation rules"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.ledger = PaymentLedger(self.storage, self.audit_trail)
        self.loan_manager = LoanManager(self.storage, self.ledger, self.audit_trail)
        self.loan = self.loan_manager.create_loan(
            account_no="101",
            holder_name="Ramesh Patel",
            file_category="A",
            slot_index=1,
            period_unit=PeriodUnit.DAY,
            start_date=date(2024, 1, 1),
            installment_amount="100"
        )

    def test_record_payment(self):
        entry = self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")

        assert isinstance(entry, LedgerEntry)
        assert entry.id == entry_key(self.loan.id, date(2024, 1, 1))
        assert entry.amount == Decimal('100.00')
        assert self.ledger.get_entry(self.loan.id, "2024-01-01") == entry

    def test_second_write_replaces(self):
        """Re-recording a day replaces the amount rather than adding a row"""
        first = self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")
        second = self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "150")

        entries = self.ledger.get_entries(self.loan.id)
        assert len(entries) == 1
        assert entries[0].amount == Decimal('150.00')
        assert second.created_at == first.created_at

    def test_idempotent_re_record(self):
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")

        entries = self.ledger.get_entries(self.loan.id)
        assert len(entries) == 1
        assert entries[0].amount == Decimal('100.00')

        recorded = [e for e in self.audit_trail.get_events_for_entity(
            "ledger_entry", entries[0].id)]
        assert len(recorded) == 1
        assert recorded[0].event_type == AuditEventType.PAYMENT_RECORDED

    def test_zero_clears_the_day(self):
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")
        result = self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "0")

        assert result is None
        assert self.ledger.get_entry(self.loan.id, date(2024, 1, 1)) is None

    def test_zero_without_entry_is_noop(self):
        assert self.ledger.record_payment(self.loan.id, date(2024, 1, 1), 0) is None
        assert self.ledger.get_entries(self.loan.id) == []

    def test_negative_clears_the_day(self):
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")
        assert self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "-5") is None
        assert self.ledger.get_entries(self.loan.id) == []

    def test_unknown_loan_rejected(self):
        with pytest.raises(ValueError, match="not found"):
            self.ledger.record_payment("missing", date(2024, 1, 1), "100")

    def test_delete_payment(self):
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")

        assert self.ledger.delete_payment(self.loan.id, date(2024, 1, 1))
        assert not self.ledger.delete_payment(self.loan.id, date(2024, 1, 1))

    def test_get_entries_sorted_and_limited(self):
        for day, amount in ((3, "30"), (1, "10"), (2, "20")):
            self.ledger.record_payment(self.loan.id, date(2024, 1, day), amount)

        entries = self.ledger.get_entries(self.loan.id)
        assert [e.entry_date for e in entries] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]

        limited = self.ledger.get_entries(self.loan.id, up_to="2024-01-02")
        assert [e.amount for e in limited] == [Decimal('10.00'), Decimal('20.00')]

    def test_entries_on(self):
        other = self.loan_manager.create_loan(
            account_no="102", holder_name="Sita Shah", file_category="A", slot_index=2,
            period_unit=PeriodUnit.DAY, start_date=date(2024, 1, 1), installment_amount="50"
        )
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")
        self.ledger.record_payment(other.id, date(2024, 1, 1), "50")
        self.ledger.record_payment(other.id, date(2024, 1, 2), "50")

        day_entries = self.ledger.entries_on(date(2024, 1, 1))
        assert set(day_entries) == {self.loan.id, other.id}
        assert day_entries[other.id].amount == Decimal('50.00')

    def test_delete_entries_for_loan(self):
        for day in (1, 2, 3):
            self.ledger.record_payment(self.loan.id, date(2024, 1, day), "100")

        assert self.ledger.delete_entries_for_loan(self.loan.id) == 3
        assert self.ledger.get_entries(self.loan.id) == []
        assert self.ledger.delete_entries_for_loan(self.loan.id) == 0

    def test_key_locks_released(self):
        """Per-day locks do not outlive the writes that took them"""
        for day in range(1, 29):
            self.ledger.record_payment(self.loan.id, date(2024, 2, day), "100")
            self.ledger.record_payment(self.loan.id, date(2024, 2, day), "100")
            self.ledger.delete_payment(self.loan.id, date(2024, 2, day))
        self.loan_manager.delete_loan(self.loan.id, cascade_payments=True)

        assert self.ledger._key_locks == {}

    def test_get_entries_since(self):
        for day in (1, 2, 3, 4):
            self.ledger.record_payment(self.loan.id, date(2024, 1, day), "100")

        entries = self.ledger.get_entries(self.loan.id, since="2024-01-02", up_to="2024-01-03")
        assert [e.entry_date for e in entries] == [date(2024, 1, 2), date(2024, 1, 3)]
        assert len(self.ledger.get_entries(self.loan.id, since=date(2024, 1, 4))) == 1

    def test_audit_events(self):
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "100")
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "150")
        self.ledger.record_payment(self.loan.id, date(2024, 1, 1), "0")

        events = self.audit_trail.get_events_for_entity(
            "ledger_entry", entry_key(self.loan.id, date(2024, 1, 1)))
        assert [e.event_type for e in events] == [
            AuditEventType.PAYMENT_RECORDED,
            AuditEventType.PAYMENT_REPLACED,
            AuditEventType.PAYMENT_CLEARED,
        ]
        assert events[1].metadata["previous_amount"] == "100.00"
        assert self.audit_trail.verify_integrity()['valid']


class TestConcurrentWrites:
    """Concurrent writers for the same day never create two entries"""

    def test_concurrent_records_same_day(self):
        with_storage = SQLiteStorage()
        ledger = PaymentLedger(with_storage)
        loan_manager = LoanManager(with_storage, ledger)
        loan = loan_manager.create_loan(
            account_no="201", holder_name="Test", file_category="B", slot_index=1,
            period_unit=PeriodUnit.DAY, start_date=date(2024, 1, 1), installment_amount="100"
        )

        amounts = [str(10 * (n + 1)) for n in range(20)]
        errors = []

        def writer(amount):
            try:
                ledger.record_payment(loan.id, date(2024, 1, 1), amount)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(amount,)) for amount in amounts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        entries = ledger.get_entries(loan.id)
        assert len(entries) == 1
        assert str(int(entries[0].amount)) in amounts
        assert ledger._key_locks == {}
        with_storage.close()

    def test_record_during_cascade_delete_leaves_no_entry(self):
        """A write that saw the loan finishes before a cascade delete purges"""
        storage = InMemoryStorage()
        ledger = PaymentLedger(storage)
        loan_manager = LoanManager(storage, ledger)
        loan = loan_manager.create_loan(
            account_no="202", holder_name="Test", file_category="B", slot_index=1,
            period_unit=PeriodUnit.DAY, start_date=date(2024, 1, 1), installment_amount="100"
        )

        checked = threading.Event()
        require_loan = ledger._require_loan

        def require_then_pause(loan_id):
            require_loan(loan_id)
            checked.set()
            time.sleep(0.05)

        ledger._require_loan = require_then_pause
        errors = []

        def writer():
            try:
                ledger.record_payment(loan.id, date(2024, 1, 1), "100")
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=writer)
        thread.start()
        assert checked.wait(timeout=5)
        assert loan_manager.delete_loan(loan.id, cascade_payments=True) == (True, 1)
        thread.join()

        assert errors == []
        assert ledger.get_entries(loan.id) == []
        assert loan_manager.get_loan(loan.id) is None


class FailingLoanDeleteStorage(InMemoryStorage):
    """Storage whose loan deletes fail, to interrupt a cascade midway"""

    def delete(self, table, record_id):
        if table == "loans":
            raise RuntimeError("disk full")
        return super().delete(table, record_id)


class TestCascadeAtomicity:
    """A cascade delete removes the loan and its entries together or not at all"""

    def test_failed_loan_delete_restores_entries(self):
        storage = FailingLoanDeleteStorage()
        ledger = PaymentLedger(storage)
        loan_manager = LoanManager(storage, ledger)
        loan = loan_manager.create_loan(
            account_no="301", holder_name="Test", file_category="C", slot_index=1,
            period_unit=PeriodUnit.DAY, start_date=date(2024, 1, 1), installment_amount="100"
        )
        ledger.record_payment(loan.id, date(2024, 1, 1), "100")
        ledger.record_payment(loan.id, date(2024, 1, 2), "100")

        with pytest.raises(RuntimeError, match="disk full"):
            loan_manager.delete_loan(loan.id, cascade_payments=True)

        assert loan_manager.get_loan(loan.id) is not None
        assert len(ledger.get_entries(loan.id)) == 2

    def test_record_after_cascade_rejected(self):
        storage = InMemoryStorage()
        ledger = PaymentLedger(storage)
        loan_manager = LoanManager(storage, ledger)
        loan = loan_manager.create_loan(
            account_no="302", holder_name="Test", file_category="C", slot_index=1,
            period_unit=PeriodUnit.DAY, start_date=date(2024, 1, 1), installment_amount="100"
        )
        loan_manager.delete_loan(loan.id, cascade_payments=True)

        with pytest.raises(ValueError, match="not found"):
            ledger.record_payment(loan.id, date(2024, 1, 1), "100")
        assert ledger.get_entries(loan.id) == []
