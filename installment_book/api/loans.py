"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .system import CollectionSystem, get_collection_system
from .schemas import (
    AssignSlotRequest, CreateLoanRequest, ReorderFileRequest, UpdateLoanRequest, parse_amount
)
from ..periods import PeriodUnit


router = APIRouter()


def _period_unit(value: Optional[str]) -> Optional[PeriodUnit]:
    if value is None:
        return None
    try:
        return PeriodUnit(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown period unit: {value}")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Add a loan to a collection file"""
    try:
        loan = system.loan_manager.create_loan(
            account_no=request.account_no,
            holder_name=request.holder_name,
            holder_name_local=request.holder_name_local,
            file_category=request.file_category,
            slot_index=request.slot_index,
            period_unit=_period_unit(request.period_unit),
            start_date=request.start_date,
            installment_amount=parse_amount(request.installment_amount),
            fixed_target_amount=parse_amount(request.fixed_target_amount)
        )

        return {
            "loan_id": loan.id,
            "account_no": loan.account_no,
            "message": "Loan created successfully"
        }

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("")
async def list_loans(
    period_unit: Optional[str] = None,
    file_category: Optional[str] = None,
    system: CollectionSystem = Depends(get_collection_system)
):
    """List loans in slot order, optionally for one file"""
    loans = system.loan_manager.list_loans(
        period_unit=_period_unit(period_unit),
        file_category=file_category
    )
    return {"loans": [loan.to_dict() for loan in loans]}


@router.get("/next-account")
async def get_next_account_no(system: CollectionSystem = Depends(get_collection_system)):
    """Propose the next free account number"""
    return {"account_no": system.loan_manager.next_account_no()}


@router.get("/by-account/{account_no}")
async def get_loan_by_account_no(
    account_no: str,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Get loan details by account number"""
    loan = system.loan_manager.get_loan_by_account_no(account_no)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")

    return loan.to_dict()


@router.post("/reorder")
async def reorder_file(
    request: ReorderFileRequest,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Renumber a collection file in the listed order"""
    try:
        loans = system.loan_manager.reorder_file(
            _period_unit(request.period_unit), request.file_category, request.loan_ids
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"loans": [loan.to_dict() for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Get loan details"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")

    return loan.to_dict()


@router.put("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Edit a loan's terms or placement"""
    if not system.loan_manager.get_loan(loan_id):
        raise HTTPException(status_code=404, detail="Loan not found")

    changes = request.model_dump(exclude_unset=True)
    if changes.get('period_unit') is not None:
        changes['period_unit'] = _period_unit(changes['period_unit'])

    try:
        for key in ('installment_amount', 'fixed_target_amount'):
            if key in changes:
                changes[key] = parse_amount(changes[key])
        loan = system.loan_manager.update_loan(loan_id, **changes)
        return loan.to_dict()

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    cascade_payments: bool = False,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Delete a loan, and its ledger entries when cascade_payments is set"""
    deleted, removed = system.loan_manager.delete_loan(loan_id, cascade_payments=cascade_payments)
    if not deleted:
        raise HTTPException(status_code=404, detail="Loan not found")

    return {
        "loan_id": loan_id,
        "entries_removed": removed,
        "message": "Loan deleted successfully"
    }


@router.get("/{loan_id}/status")
async def get_payment_status(
    loan_id: str,
    as_of: str,
    today_amount: Optional[str] = None,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Standing of a loan as of a day"""
    if not system.loan_manager.get_loan(loan_id):
        raise HTTPException(status_code=404, detail="Loan not found")

    try:
        payment_status = system.loan_manager.payment_status(loan_id, as_of, parse_amount(today_amount))
        return payment_status.to_dict()

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{loan_id}/slot")
async def assign_slot(
    loan_id: str,
    request: AssignSlotRequest,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Move a loan to another row of its file, swapping with the occupant"""
    if not system.loan_manager.get_loan(loan_id):
        raise HTTPException(status_code=404, detail="Loan not found")

    try:
        moved, displaced = system.loan_manager.assign_slot(loan_id, request.slot_index)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "loan": moved.to_dict(),
        "displaced": displaced.to_dict() if displaced else None
    }
