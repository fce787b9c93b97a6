"""
Collection Book Module

Builds the day's collection sheet for one physical file: every loan in slot
order with its standing, the amount collected (or about to be collected)
today, and the short labels a cashier reads off the printed sheet. The sheet
only formats what the arrears calculator returns; it never does date
arithmetic of its own.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .amounts import AmountLike, ZERO, format_amount, format_date, to_amount
from .arrears import PaymentState, PaymentStatus, compute_status
from .config import get_config
from .ledger import LedgerEntry, PaymentLedger
from .loans import Loan, LoanManager
from .logging_config import get_logger, log_action
from .periods import DateLike, PeriodUnit, to_date


STATE_TONES = {
    PaymentState.ARREARS: "red",
    PaymentState.SETTLED: "green",
    PaymentState.ADVANCE: "green",
    PaymentState.NOT_STARTED: "grey",
}


@dataclass
class CollectionRow:
    """One loan's line on the collection sheet"""
    loan: Loan
    status: PaymentStatus
    committed_entry: Optional[LedgerEntry]
    status_label: str
    status_tone: str
    previous_label: str
    previous_tone: str

    @property
    def committed_amount(self) -> Decimal:
        return self.committed_entry.amount if self.committed_entry else ZERO

    @property
    def has_uncommitted_change(self) -> bool:
        return self.status.today_payment != self.committed_amount

    def to_dict(self) -> Dict:
        return {
            "loan_id": self.loan.id,
            "account_no": self.loan.account_no,
            "holder_name": self.loan.holder_name,
            "holder_name_local": self.loan.holder_name_local,
            "slot_index": self.loan.slot_index,
            "installment_amount": str(self.loan.installment_amount) if self.loan.installment_amount is not None else None,
            "committed_amount": str(self.committed_amount),
            "status_label": self.status_label,
            "status_tone": self.status_tone,
            "previous_label": self.previous_label,
            "previous_tone": self.previous_tone,
            "status": self.status.to_dict()
        }


@dataclass
class CollectionSheet:
    """A collection file as of one day"""
    as_of_date: date
    period_unit: Optional[PeriodUnit]
    file_category: Optional[str]
    rows: List[CollectionRow] = field(default_factory=list)

    @property
    def today_total(self) -> Decimal:
        return sum((row.status.today_payment for row in self.rows), ZERO)

    @property
    def arrears_total(self) -> Decimal:
        return sum((row.status.remaining for row in self.rows if row.status.in_arrears), ZERO)

    @property
    def state_counts(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in PaymentState}
        for row in self.rows:
            counts[row.status.state.value] += 1
        return counts

    def to_dict(self) -> Dict:
        return {
            "as_of_date": self.as_of_date.isoformat(),
            "period_unit": self.period_unit.value if self.period_unit else None,
            "file_category": self.file_category,
            "today_total": str(self.today_total),
            "arrears_total": str(self.arrears_total),
            "state_counts": self.state_counts,
            "rows": [row.to_dict() for row in self.rows]
        }


def status_label(status: PaymentStatus, loan: Loan) -> str:
    """What the sheet prints in the status column"""
    settings = get_config()

    if status.state == PaymentState.ARREARS:
        return format_amount(status.remaining, settings.currency_symbol, settings.display_amount_places)
    if status.state == PaymentState.SETTLED:
        return format_date(status.next_due_date, settings.display_date_format)
    if status.state == PaymentState.ADVANCE:
        shown = status.paid_through_date if status.whole_periods_covered > 0 else status.next_due_date
        return format_date(shown, settings.display_date_format)
    return format_date(loan.start_date, settings.display_date_format)


def previous_label(status: PaymentStatus) -> str:
    """What was already overdue before today, or the previous due date"""
    settings = get_config()

    if status.previous_period_remaining > ZERO:
        return format_amount(status.previous_period_remaining, settings.currency_symbol,
                             settings.display_amount_places)
    return format_date(status.previous_period_date, settings.display_date_format)


def previous_tone(status: PaymentStatus) -> str:
    if status.state == PaymentState.NOT_STARTED:
        return "grey"
    return "yellow" if status.previous_period_remaining > ZERO else "green"


class CollectionBook:
    """
    Thin adapter from stored loans to the printed collection sheet
    """

    def __init__(self, loan_manager: LoanManager, ledger: PaymentLedger):
        self.loan_manager = loan_manager
        self.ledger = ledger
        self.logger = get_logger("installment_book.collection_book")

    def build_sheet(
        self,
        as_of_date: DateLike,
        period_unit: Optional[PeriodUnit] = None,
        file_category: Optional[str] = None,
        today_amounts: Optional[Dict[str, AmountLike]] = None
    ) -> CollectionSheet:
        """
        Compute every loan's line for a day

        Args:
            as_of_date: Day the sheet is for
            period_unit: Restrict to daily, monthly or pending loans
            file_category: Restrict to one collection file
            today_amounts: Uncommitted amounts by loan id; loans not listed use
                the amount already committed for the day

        Returns:
            CollectionSheet with rows in slot order
        """
        as_of_date = to_date(as_of_date)
        today_amounts = today_amounts or {}
        committed = self.ledger.entries_on(as_of_date)

        sheet = CollectionSheet(
            as_of_date=as_of_date,
            period_unit=PeriodUnit(period_unit) if period_unit is not None else None,
            file_category=file_category
        )

        for loan in self.loan_manager.list_loans(period_unit=period_unit, file_category=file_category):
            entry = committed.get(loan.id)
            if loan.id in today_amounts:
                today_amount = today_amounts[loan.id]
            else:
                today_amount = entry.amount if entry else ZERO

            status = compute_status(loan, self.ledger.get_entries(loan.id), as_of_date, today_amount)
            sheet.rows.append(CollectionRow(
                loan=loan,
                status=status,
                committed_entry=entry,
                status_label=status_label(status, loan),
                status_tone=STATE_TONES[status.state],
                previous_label=previous_label(status),
                previous_tone=previous_tone(status)
            ))

        return sheet

    def commit_sheet(self, as_of_date: DateLike, amounts: Dict[str, AmountLike]) -> Dict[str, Optional[LedgerEntry]]:
        """
        Record the day's collection for each listed loan

        A zero amount clears the day's entry. Unknown loan ids raise before
        anything is written.

        Returns:
            The stored entry (or None when cleared) per loan id
        """
        as_of_date = to_date(as_of_date)
        checked = {loan_id: to_amount(amount) for loan_id, amount in amounts.items()}

        for loan_id in checked:
            if not self.loan_manager.get_loan(loan_id):
                raise ValueError(f"Loan {loan_id} not found")

        results = {}
        for loan_id, amount in checked.items():
            results[loan_id] = self.ledger.record_payment(loan_id, as_of_date, amount)

        log_action(
            self.logger, "info", f"Committed collection sheet for {as_of_date.isoformat()}",
            action="sheet_committed",
            extra={"loans": len(results), "total": str(sum(checked.values(), ZERO))}
        )
        return results
