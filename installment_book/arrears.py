"""
Arrears Calculator Module

The single authoritative calculation of how much a loan owes as of a day.
Given a loan's current schedule, its ledger entries, an as-of date and the
amount being collected today (possibly not yet committed), it classifies the
account as not started, in arrears, settled or paid in advance, and works out
how far forward the payments carry it.

The calculator is pure: it never reads a clock or storage, so identical
inputs always produce an identical PaymentStatus.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, Optional, TYPE_CHECKING
from enum import Enum

from .amounts import AmountLike, ZERO, to_amount
from .periods import DateLike, date_after_periods, periods_elapsed, to_date
from .storage import to_storable

if TYPE_CHECKING:
    from .ledger import LedgerEntry
    from .loans import Loan


class PaymentState(Enum):
    """Where a loan stands against its schedule"""
    NOT_STARTED = "not_started"   # Start date after the as-of date, nothing paid
    ARREARS = "arrears"           # Payments short of what is due
    SETTLED = "settled"           # Payments exactly match what is due
    ADVANCE = "advance"           # Payments exceed what is due


@dataclass(frozen=True)
class PaymentStatus:
    """Calculator output for one loan on one day"""
    as_of_date: date
    total_due: Decimal
    total_paid_before_today: Decimal
    today_payment: Decimal
    total_paid: Decimal
    remaining: Decimal                      # Positive arrears, negative credit
    state: PaymentState
    paid_through_date: Optional[date]
    previous_period_remaining: Decimal      # Overdue before today, never negative
    partial_credit_toward_next_period: Decimal = ZERO
    periods_elapsed: int = 0
    whole_periods_covered: int = 0
    periods_in_arrears: int = 0
    next_due_date: Optional[date] = None
    previous_period_date: Optional[date] = None

    @property
    def in_arrears(self) -> bool:
        return self.state == PaymentState.ARREARS

    def to_dict(self) -> Dict[str, Any]:
        return to_storable(asdict(self))


def _paid_by_date(payments: Iterable['LedgerEntry']) -> Dict[date, Decimal]:
    """Sum ledger amounts per calendar day, normalising stored dates"""
    totals: Dict[date, Decimal] = {}
    for payment in payments:
        day = to_date(payment.entry_date)
        totals[day] = totals.get(day, ZERO) + Decimal(payment.amount)
    return totals


def _paid_before(paid: Dict[date, Decimal], cutoff: date) -> Decimal:
    return sum((amount for day, amount in paid.items() if day < cutoff), ZERO)


def _paid_up_to(paid: Dict[date, Decimal], cutoff: date) -> Decimal:
    return sum((amount for day, amount in paid.items() if day <= cutoff), ZERO)


def compute_status(
    loan: 'Loan',
    payments: Iterable['LedgerEntry'],
    as_of_date: DateLike,
    today_amount: AmountLike = 0
) -> PaymentStatus:
    """
    Work out a loan's standing as of a day

    Entries dated before as_of_date are "paid before today". Today's own
    ledger entry is not read; today's collection is whatever the caller
    passes as today_amount, which lets an operator preview an amount before
    committing it.

    Args:
        loan: Loan with its current schedule terms
        payments: This loan's ledger entries, in any order
        as_of_date: Day the standing is computed for
        today_amount: Amount collected (or about to be) on as_of_date

    Returns:
        PaymentStatus

    Raises:
        LoanConfigurationError: If the loan's schedule terms are unusable
        ValueError: If today_amount is negative
    """
    loan.validate()

    as_of_date = to_date(as_of_date)
    today_payment = to_amount(today_amount)
    if today_payment < ZERO:
        raise ValueError(f"Loan {loan.id}: today's amount cannot be negative, got {today_payment}")

    paid = _paid_by_date(payments)
    paid_before_today = _paid_before(paid, as_of_date)
    total_paid = paid_before_today + today_payment

    if loan.start_date > as_of_date:
        return _not_started_status(loan, as_of_date, paid_before_today, today_payment, total_paid)

    if not loan.is_periodic:
        return _fixed_status(loan, as_of_date, paid_before_today, today_payment, total_paid)

    return _periodic_status(loan, paid, as_of_date, paid_before_today, today_payment, total_paid)


def _not_started_status(
    loan: 'Loan',
    as_of_date: date,
    paid_before_today: Decimal,
    today_payment: Decimal,
    total_paid: Decimal
) -> PaymentStatus:
    """Nothing is due yet; anything paid is banked against the schedule"""
    state = PaymentState.ADVANCE if total_paid > ZERO else PaymentState.NOT_STARTED

    if not loan.is_periodic:
        return PaymentStatus(
            as_of_date=as_of_date,
            total_due=loan.fixed_target_amount,
            total_paid_before_today=paid_before_today,
            today_payment=today_payment,
            total_paid=total_paid,
            remaining=max(loan.fixed_target_amount - total_paid, ZERO),
            state=state,
            paid_through_date=loan.start_date,
            previous_period_remaining=ZERO,
            next_due_date=loan.start_date
        )

    installment = loan.installment_amount
    whole = int(total_paid // installment)
    # Before the start, paid_through_date and next_due_date are the same day:
    # the first anchor the prepayment does not cover. Once started, ADVANCE
    # reports paid_through as the last covered day and next_due one period on.
    covered_until = date_after_periods(loan.start_date, whole, loan.period_unit)

    return PaymentStatus(
        as_of_date=as_of_date,
        total_due=ZERO,
        total_paid_before_today=paid_before_today,
        today_payment=today_payment,
        total_paid=total_paid,
        remaining=ZERO - total_paid,
        state=state,
        paid_through_date=covered_until if total_paid > ZERO else None,
        previous_period_remaining=ZERO,
        partial_credit_toward_next_period=total_paid - whole * installment,
        whole_periods_covered=whole,
        next_due_date=covered_until,
        previous_period_date=date_after_periods(as_of_date, -1, loan.period_unit)
    )


def _fixed_status(
    loan: 'Loan',
    as_of_date: date,
    paid_before_today: Decimal,
    today_payment: Decimal,
    total_paid: Decimal
) -> PaymentStatus:
    """A lump target with no schedule; overpayment is not carried anywhere"""
    target = loan.fixed_target_amount
    remaining = max(target - total_paid, ZERO)

    return PaymentStatus(
        as_of_date=as_of_date,
        total_due=target,
        total_paid_before_today=paid_before_today,
        today_payment=today_payment,
        total_paid=total_paid,
        remaining=remaining,
        state=PaymentState.ARREARS if remaining > ZERO else PaymentState.SETTLED,
        paid_through_date=as_of_date,
        previous_period_remaining=max(target - paid_before_today, ZERO),
        next_due_date=as_of_date
    )


def _periodic_status(
    loan: 'Loan',
    paid: Dict[date, Decimal],
    as_of_date: date,
    paid_before_today: Decimal,
    today_payment: Decimal,
    total_paid: Decimal
) -> PaymentStatus:
    unit = loan.period_unit
    installment = loan.installment_amount

    periods = periods_elapsed(loan.start_date, as_of_date, unit)
    total_due = installment * periods
    remaining = total_due - total_paid

    whole = 0
    partial = ZERO
    in_arrears = 0

    if remaining > ZERO:
        state = PaymentState.ARREARS
        covered = int(total_paid // installment) if total_paid > ZERO else 0
        in_arrears = periods - covered
        paid_through = date_after_periods(loan.start_date, covered - 1, unit) if covered else None
        next_due = as_of_date
    elif remaining == ZERO:
        state = PaymentState.SETTLED
        paid_through = as_of_date
        next_due = date_after_periods(as_of_date, 1, unit)
    else:
        state = PaymentState.ADVANCE
        overpayment = -remaining
        whole = int(overpayment // installment)
        partial = overpayment - whole * installment
        paid_through = date_after_periods(as_of_date, whole, unit)
        next_due = date_after_periods(paid_through, 1, unit)

    previous_date = date_after_periods(as_of_date, -1, unit)
    previous_due = installment * periods_elapsed(loan.start_date, previous_date, unit)
    previous_remaining = max(previous_due - _paid_up_to(paid, previous_date), ZERO)

    return PaymentStatus(
        as_of_date=as_of_date,
        total_due=total_due,
        total_paid_before_today=paid_before_today,
        today_payment=today_payment,
        total_paid=total_paid,
        remaining=remaining,
        state=state,
        paid_through_date=paid_through,
        previous_period_remaining=previous_remaining,
        partial_credit_toward_next_period=partial,
        periods_elapsed=periods,
        whole_periods_covered=whole,
        periods_in_arrears=in_arrears,
        next_due_date=next_due,
        previous_period_date=previous_date
    )
