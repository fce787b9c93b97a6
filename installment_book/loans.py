"""
Loan Module

Loan records for the collection files: daily and monthly installment loans
and fixed-target ("pending") loans. Handles validation of the schedule terms,
loan lifecycle (create, edit, delete with optional ledger cascade) and the
placement of each loan in its physical collection file.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple
import uuid

from .amounts import AmountLike, ZERO, to_amount
from .arrears import PaymentStatus, compute_status
from .audit import AuditTrail, AuditEventType
from .ledger import LedgerEntry, PaymentLedger
from .logging_config import get_logger, log_action
from .periods import DateLike, PeriodUnit, to_date
from .storage import StorageInterface, StorageRecord


class LoanConfigurationError(ValueError):
    """A loan's schedule terms cannot be used for arrears calculations"""

    def __init__(self, loan_id: Optional[str], field: str, message: str):
        self.loan_id = loan_id
        self.field = field
        super().__init__(f"Loan {loan_id}: {field} {message}")


@dataclass
class Loan(StorageRecord):
    """Loan account as kept in a collection file"""
    account_no: str
    holder_name: str
    file_category: str
    slot_index: int
    period_unit: PeriodUnit
    start_date: date
    installment_amount: Optional[Decimal] = None    # DAY and MONTH loans
    fixed_target_amount: Optional[Decimal] = None   # FIXED loans
    holder_name_local: Optional[str] = None

    @property
    def is_periodic(self) -> bool:
        return self.period_unit.is_periodic

    def validate(self) -> None:
        """
        Check the schedule terms before any arithmetic uses them

        Raises:
            LoanConfigurationError: Naming the loan and the offending field
        """
        if not isinstance(self.period_unit, PeriodUnit):
            raise LoanConfigurationError(self.id, "period_unit", f"must be a PeriodUnit, got {self.period_unit!r}")

        if not isinstance(self.start_date, date):
            raise LoanConfigurationError(self.id, "start_date", "is required")

        if self.is_periodic:
            if self.installment_amount is None:
                raise LoanConfigurationError(self.id, "installment_amount", "is required for periodic loans")
            if self.installment_amount <= ZERO:
                raise LoanConfigurationError(self.id, "installment_amount", "must be positive")
            if self.fixed_target_amount is not None:
                raise LoanConfigurationError(self.id, "fixed_target_amount", "must be empty for periodic loans")
        else:
            if self.fixed_target_amount is None:
                raise LoanConfigurationError(self.id, "fixed_target_amount", "is required for fixed-target loans")
            if self.fixed_target_amount < ZERO:
                raise LoanConfigurationError(self.id, "fixed_target_amount", "cannot be negative")
            if self.installment_amount is not None:
                raise LoanConfigurationError(self.id, "installment_amount", "must be empty for fixed-target loans")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = cls._timestamps_from_dict(data)
        data['period_unit'] = PeriodUnit(data['period_unit'])
        data['start_date'] = to_date(data['start_date'])
        for key in ('installment_amount', 'fixed_target_amount'):
            if data.get(key) is not None:
                data[key] = Decimal(data[key])
        return cls(**data)


EDITABLE_FIELDS = {
    'account_no', 'holder_name', 'holder_name_local', 'file_category', 'slot_index',
    'period_unit', 'start_date', 'installment_amount', 'fixed_target_amount'
}


class LoanManager:
    """
    Manages loan records and their place in the collection files
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: PaymentLedger,
        audit_trail: Optional[AuditTrail] = None,
        slots_per_file: int = 84
    ):
        self.storage = storage
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.slots_per_file = slots_per_file
        self.table_name = ledger.loans_table
        self.logger = get_logger("installment_book.loans")

    def create_loan(
        self,
        account_no: str,
        holder_name: str,
        file_category: str,
        slot_index: int,
        period_unit: PeriodUnit,
        start_date: DateLike,
        installment_amount: Optional[AmountLike] = None,
        fixed_target_amount: Optional[AmountLike] = None,
        holder_name_local: Optional[str] = None
    ) -> Loan:
        """
        Add a loan to a collection file

        Args:
            account_no: Operator-facing account number, unique
            holder_name: Borrower name
            file_category: Collection file the loan is kept in
            slot_index: Row within the file (1..slots_per_file)
            period_unit: DAY, MONTH or FIXED
            start_date: Day the first installment falls due
            installment_amount: Per-period amount (DAY/MONTH)
            fixed_target_amount: Total to repay (FIXED)
            holder_name_local: Borrower name in the local script

        Returns:
            Created Loan
        """
        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_no=str(account_no).strip(),
            holder_name=holder_name.strip(),
            holder_name_local=holder_name_local,
            file_category=file_category.strip(),
            slot_index=int(slot_index),
            period_unit=PeriodUnit(period_unit),
            start_date=to_date(start_date),
            installment_amount=to_amount(installment_amount) if installment_amount is not None else None,
            fixed_target_amount=to_amount(fixed_target_amount) if fixed_target_amount is not None else None
        )
        loan.validate()

        with self.storage.atomic():
            self._check_placement(loan)
            self._save_loan(loan)

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "account_no": loan.account_no,
                    "period_unit": loan.period_unit,
                    "installment_amount": loan.installment_amount,
                    "fixed_target_amount": loan.fixed_target_amount,
                    "start_date": loan.start_date
                }
            )
        log_action(self.logger, "info", f"Loan {loan.account_no} created",
                   loan_id=loan.id, action="loan_created")
        return loan

    def update_loan(self, loan_id: str, **changes: Any) -> Loan:
        """
        Edit a loan's fields; the merged record is validated as a whole

        Switching period_unit requires passing the matching amount field and
        clearing the other (set it to None).
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        loan = self.get_loan(loan_id)
        if not loan:
            raise ValueError(f"Loan {loan_id} not found")

        if 'period_unit' in changes:
            changes['period_unit'] = PeriodUnit(changes['period_unit'])
        if 'start_date' in changes:
            changes['start_date'] = to_date(changes['start_date'])
        if 'slot_index' in changes:
            changes['slot_index'] = int(changes['slot_index'])
        for key in ('installment_amount', 'fixed_target_amount'):
            if changes.get(key) is not None:
                changes[key] = to_amount(changes[key])

        updated = replace(loan, updated_at=datetime.now(timezone.utc), **changes)
        updated.validate()

        with self.storage.atomic():
            self._check_placement(updated)
            self._save_loan(updated)

        changed = {key: getattr(updated, key) for key in changes
                   if getattr(updated, key) != getattr(loan, key)}
        if self.audit_trail and changed:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_UPDATED,
                entity_type="loan",
                entity_id=loan_id,
                metadata={"changes": changed}
            )
        log_action(self.logger, "info", f"Loan {updated.account_no} updated",
                   loan_id=loan_id, action="loan_updated", extra={"fields": sorted(changed)})
        return updated

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.table_name, loan_id)
        return Loan.from_dict(data) if data else None

    def get_loan_by_account_no(self, account_no: str) -> Optional[Loan]:
        found = self.storage.find(self.table_name, {'account_no': str(account_no).strip()})
        return Loan.from_dict(found[0]) if found else None

    def list_loans(
        self,
        period_unit: Optional[PeriodUnit] = None,
        file_category: Optional[str] = None
    ) -> List[Loan]:
        """Loans in a file (or all files), ordered by slot"""
        filters = {}
        if period_unit is not None:
            filters['period_unit'] = PeriodUnit(period_unit).value
        if file_category is not None:
            filters['file_category'] = file_category
        loans = [Loan.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        loans.sort(key=lambda loan: (loan.file_category, loan.slot_index, loan.account_no))
        return loans

    def next_account_no(self) -> str:
        """Propose the account number after the highest numeric one in use"""
        numbers = [int(data['account_no']) for data in self.storage.load_all(self.table_name)
                   if str(data.get('account_no', '')).isdigit()]
        return str(max(numbers) + 1) if numbers else "1"

    def delete_loan(self, loan_id: str, cascade_payments: bool = False) -> Tuple[bool, int]:
        """
        Remove a loan, and its ledger entries only when asked to

        Args:
            loan_id: Loan to remove
            cascade_payments: Also delete every ledger entry of the loan

        Returns:
            (loan_deleted, ledger_entries_removed)
        """
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            if not loan:
                return False, 0

            removed = self.ledger.purge_entries(loan_id) if cascade_payments else 0
            self.storage.delete(self.table_name, loan_id)

        self.ledger.record_purge(loan_id, removed)

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_DELETED,
                entity_type="loan",
                entity_id=loan_id,
                metadata={
                    "account_no": loan.account_no,
                    "cascade_payments": cascade_payments,
                    "entries_removed": removed
                }
            )
        log_action(self.logger, "info", f"Loan {loan.account_no} deleted",
                   loan_id=loan_id, action="loan_deleted",
                   extra={"cascade_payments": cascade_payments, "entries_removed": removed})
        return True, removed

    def assign_slot(self, loan_id: str, slot_index: int) -> Tuple[Loan, Optional[Loan]]:
        """
        Move a loan to another row of its file

        An occupied row is not an error: its occupant swaps into the row the
        loan is leaving.

        Returns:
            (moved_loan, displaced_loan or None)
        """
        slot_index = int(slot_index)
        if not 1 <= slot_index <= self.slots_per_file:
            raise ValueError(f"Slot must be between 1 and {self.slots_per_file}, got {slot_index}")

        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            if not loan:
                raise ValueError(f"Loan {loan_id} not found")

            now = datetime.now(timezone.utc)
            moved = replace(loan, slot_index=slot_index, updated_at=now)
            displaced = None
            occupant = self._occupant(loan.period_unit, loan.file_category, slot_index)
            if occupant and occupant.id != loan.id:
                displaced = replace(occupant, slot_index=loan.slot_index, updated_at=now)
                self._save_loan(displaced)
            self._save_loan(moved)

        self._record_move(moved, loan.slot_index)
        if displaced:
            self._record_move(displaced, slot_index)
        return moved, displaced

    def reorder_file(
        self,
        period_unit: PeriodUnit,
        file_category: str,
        loan_ids: List[str]
    ) -> List[Loan]:
        """
        Renumber a whole file: the n-th listed loan takes slot n

        Every loan of the file must be listed exactly once.
        """
        period_unit = PeriodUnit(period_unit)
        if len(set(loan_ids)) != len(loan_ids):
            raise ValueError("Each loan may be listed only once")

        with self.storage.atomic():
            current = {loan.id: loan for loan in self.list_loans(period_unit, file_category)}
            if set(loan_ids) != set(current):
                raise ValueError(
                    f"Reorder must list every loan in the {period_unit.value} "
                    f"{file_category} file, and nothing else"
                )

            now = datetime.now(timezone.utc)
            moves = [(replace(current[loan_id], slot_index=slot, updated_at=now), current[loan_id].slot_index)
                     for slot, loan_id in enumerate(loan_ids, start=1)]
            for loan, _ in moves:
                self._save_loan(loan)

        for loan, previous_slot in moves:
            self._record_move(loan, previous_slot)
        return [loan for loan, _ in moves]

    def payment_history(
        self,
        account_no: str,
        since: Optional[DateLike] = None,
        up_to: Optional[DateLike] = None
    ) -> Tuple[Loan, List[LedgerEntry]]:
        """A loan's ledger entries between two days (inclusive), newest first"""
        loan = self.get_loan_by_account_no(account_no)
        if not loan:
            raise ValueError(f"Account {account_no} not found")

        entries = self.ledger.get_entries(loan.id, up_to=up_to, since=since)
        entries.reverse()
        return loan, entries

    def payment_status(
        self,
        loan_id: str,
        as_of_date: DateLike,
        today_amount: Optional[AmountLike] = None
    ) -> PaymentStatus:
        """
        Fresh PaymentStatus for a stored loan

        Re-reads the loan and its ledger so edits made since the last call are
        always reflected. Without a today_amount, the amount already committed
        for as_of_date (if any) stands in for today's collection.
        """
        loan = self.get_loan(loan_id)
        if not loan:
            raise ValueError(f"Loan {loan_id} not found")

        as_of_date = to_date(as_of_date)
        entries = self.ledger.get_entries(loan_id)
        if today_amount is None:
            today_amount = sum((e.amount for e in entries if e.entry_date == as_of_date), ZERO)
        return compute_status(loan, entries, as_of_date, today_amount)

    def _check_placement(self, loan: Loan) -> None:
        """Account numbers are unique; a slot holds one loan per file"""
        if not 1 <= loan.slot_index <= self.slots_per_file:
            raise ValueError(f"Slot must be between 1 and {self.slots_per_file}, got {loan.slot_index}")

        for data in self.storage.find(self.table_name, {'account_no': loan.account_no}):
            if data['id'] != loan.id:
                raise ValueError(f"Account number {loan.account_no} already exists")

        occupants = self.storage.find(self.table_name, {
            'period_unit': loan.period_unit.value,
            'file_category': loan.file_category,
            'slot_index': loan.slot_index
        })
        for data in occupants:
            if data['id'] != loan.id:
                raise ValueError(
                    f"Slot {loan.slot_index} is already taken in the "
                    f"{loan.period_unit.value} {loan.file_category} file"
                )

    def _occupant(self, period_unit: PeriodUnit, file_category: str, slot_index: int) -> Optional[Loan]:
        found = self.storage.find(self.table_name, {
            'period_unit': period_unit.value,
            'file_category': file_category,
            'slot_index': slot_index
        })
        return Loan.from_dict(found[0]) if found else None

    def _record_move(self, loan: Loan, previous_slot: int) -> None:
        if loan.slot_index == previous_slot:
            return
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_MOVED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "account_no": loan.account_no,
                    "file_category": loan.file_category,
                    "from_slot": previous_slot,
                    "to_slot": loan.slot_index
                }
            )
        log_action(self.logger, "info", f"Loan {loan.account_no} moved to slot {loan.slot_index}",
                   loan_id=loan.id, action="loan_moved")

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.table_name, loan.id, loan.to_dict())
