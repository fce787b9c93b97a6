"""
Payment Ledger Module

The collection ledger is a sparse map from (loan, calendar day) to the amount
collected that day. It is not an append-only transaction log: recording a
second amount for a day replaces the first, and recording zero clears the day.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple
import threading

from .amounts import AmountLike, ZERO, to_amount
from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger, log_action
from .periods import DateLike, to_date
from .storage import StorageInterface, StorageRecord


def entry_key(loan_id: str, entry_date: date) -> str:
    """Storage id of a ledger entry; one id per loan per calendar day"""
    return f"{loan_id}:{entry_date.isoformat()}"


@dataclass
class LedgerEntry(StorageRecord):
    """Amount collected from one loan on one calendar day"""
    loan_id: str
    entry_date: date
    amount: Decimal

    @classmethod
    def from_dict(cls, data: Dict) -> 'LedgerEntry':
        data = cls._timestamps_from_dict(data)
        data['entry_date'] = to_date(data['entry_date'])
        data['amount'] = Decimal(data['amount'])
        return cls(**data)


class PaymentLedger:
    """
    Applies the ledger mutation rules

    At most one entry exists per (loan_id, entry_date). Writes for the same
    key are serialised by a per-key lock and land on the same storage id, so a
    racing second write replaces rather than duplicates. A key's lock lives
    only while some thread holds or waits on it.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        loans_table: str = "loans"
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loans_table = loans_table
        self.table_name = "ledger_entries"
        self.logger = get_logger("installment_book.ledger")

        # (loan_id, entry_date) -> (lock, number of threads holding or waiting)
        self._key_locks: Dict[Tuple[str, date], Tuple[threading.Lock, int]] = {}
        self._key_locks_guard = threading.Lock()

    @contextmanager
    def _key_lock(self, loan_id: str, entry_date: date):
        key = (loan_id, entry_date)
        with self._key_locks_guard:
            lock, users = self._key_locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._key_locks[key] = (lock, users + 1)

        try:
            with lock:
                yield
        finally:
            with self._key_locks_guard:
                lock, users = self._key_locks[key]
                if users == 1:
                    del self._key_locks[key]
                else:
                    self._key_locks[key] = (lock, users - 1)

    def _require_loan(self, loan_id: str) -> None:
        if not self.storage.exists(self.loans_table, loan_id):
            raise ValueError(f"Loan {loan_id} not found")

    def _audit(self, event_type: AuditEventType, entity_id: str, metadata: Dict) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="ledger_entry",
                entity_id=entity_id,
                metadata=metadata
            )

    def record_payment(
        self,
        loan_id: str,
        entry_date: DateLike,
        amount: AmountLike
    ) -> Optional[LedgerEntry]:
        """
        Record the amount collected from a loan on a day

        Args:
            loan_id: Loan the money was collected for
            entry_date: Calendar day the collection is attributed to
            amount: Amount collected; zero or negative clears the day

        Returns:
            The stored entry, or None when the day was cleared
        """
        entry_date = to_date(entry_date)
        amount = to_amount(amount)
        record_id = entry_key(loan_id, entry_date)

        with self._key_lock(loan_id, entry_date):
            with self.storage.atomic():
                # The loan must still exist when the entry lands
                self._require_loan(loan_id)
                existing = self.get_entry(loan_id, entry_date)
                entry = None

                if amount <= ZERO:
                    if existing:
                        self.storage.delete(self.table_name, record_id)
                elif existing and existing.amount == amount:
                    return existing
                else:
                    now = datetime.now(timezone.utc)
                    entry = LedgerEntry(
                        id=record_id,
                        created_at=existing.created_at if existing else now,
                        updated_at=now,
                        loan_id=loan_id,
                        entry_date=entry_date,
                        amount=amount
                    )
                    self.storage.save(self.table_name, record_id, entry.to_dict())

        if entry is None:
            if existing:
                self._audit(AuditEventType.PAYMENT_CLEARED, record_id, {
                    "loan_id": loan_id,
                    "entry_date": entry_date,
                    "previous_amount": existing.amount
                })
                log_action(
                    self.logger, "info", f"Cleared collection for {entry_date.isoformat()}",
                    loan_id=loan_id, action="payment_cleared", resource=record_id
                )
            return None

        if existing:
            self._audit(AuditEventType.PAYMENT_REPLACED, record_id, {
                "loan_id": loan_id,
                "entry_date": entry_date,
                "previous_amount": existing.amount,
                "amount": amount
            })
        else:
            self._audit(AuditEventType.PAYMENT_RECORDED, record_id, {
                "loan_id": loan_id,
                "entry_date": entry_date,
                "amount": amount
            })

        log_action(
            self.logger, "info",
            f"{'Replaced' if existing else 'Recorded'} collection of {amount} for {entry_date.isoformat()}",
            loan_id=loan_id, action="payment_recorded", resource=record_id
        )
        return entry

    def delete_payment(self, loan_id: str, entry_date: DateLike) -> bool:
        """
        Remove a day's entry

        Returns:
            True if an entry was removed, False if there was none
        """
        entry_date = to_date(entry_date)
        record_id = entry_key(loan_id, entry_date)

        with self._key_lock(loan_id, entry_date):
            existing = self.get_entry(loan_id, entry_date)
            if not existing:
                return False
            self.storage.delete(self.table_name, record_id)

        self._audit(AuditEventType.PAYMENT_CLEARED, record_id, {
            "loan_id": loan_id,
            "entry_date": entry_date,
            "previous_amount": existing.amount
        })
        log_action(
            self.logger, "info", f"Deleted collection for {entry_date.isoformat()}",
            loan_id=loan_id, action="payment_deleted", resource=record_id
        )
        return True

    def get_entry(self, loan_id: str, entry_date: DateLike) -> Optional[LedgerEntry]:
        data = self.storage.load(self.table_name, entry_key(loan_id, to_date(entry_date)))
        return LedgerEntry.from_dict(data) if data else None

    def get_entries(
        self,
        loan_id: str,
        up_to: Optional[DateLike] = None,
        since: Optional[DateLike] = None
    ) -> List[LedgerEntry]:
        """
        A loan's entries in date order

        Args:
            loan_id: Loan to read
            up_to: Only entries dated on or before this day
            since: Only entries dated on or after this day

        Returns:
            List of LedgerEntry sorted by entry_date
        """
        entries = [LedgerEntry.from_dict(data)
                   for data in self.storage.find(self.table_name, {'loan_id': loan_id})]
        if up_to is not None:
            cutoff = to_date(up_to)
            entries = [e for e in entries if e.entry_date <= cutoff]
        if since is not None:
            first = to_date(since)
            entries = [e for e in entries if e.entry_date >= first]
        entries.sort(key=lambda e: e.entry_date)
        return entries

    def entries_on(self, entry_date: DateLike) -> Dict[str, LedgerEntry]:
        """Every entry attributed to one day, keyed by loan id"""
        day = to_date(entry_date)
        found = self.storage.find(self.table_name, {'entry_date': day.isoformat()})
        return {entry.loan_id: entry for entry in map(LedgerEntry.from_dict, found)}

    def delete_entries_for_loan(self, loan_id: str) -> int:
        """Remove every entry of a loan, returning how many were removed"""
        removed = self.purge_entries(loan_id)
        self.record_purge(loan_id, removed)
        return removed

    def purge_entries(self, loan_id: str) -> int:
        """
        Storage half of delete_entries_for_loan, for callers that purge inside
        their own transaction and call record_purge once it has committed
        """
        return self.storage.delete_where(self.table_name, {'loan_id': loan_id})

    def record_purge(self, loan_id: str, removed: int) -> None:
        if removed:
            self._audit(AuditEventType.PAYMENTS_PURGED, loan_id, {
                "loan_id": loan_id,
                "entries_removed": removed
            })
            log_action(
                self.logger, "info", f"Purged {removed} collection entries",
                loan_id=loan_id, action="payments_purged"
            )
