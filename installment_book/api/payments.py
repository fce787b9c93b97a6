"""
Ledger endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends

from .system import CollectionSystem, get_collection_system
from .schemas import RecordPaymentRequest, parse_amount


router = APIRouter()


def _require_loan(system: CollectionSystem, loan_id: str) -> None:
    if not system.loan_manager.get_loan(loan_id):
        raise HTTPException(status_code=404, detail="Loan not found")


@router.post("")
async def record_payment(
    request: RecordPaymentRequest,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Record (or replace, or clear) a day's collection for a loan"""
    _require_loan(system, request.loan_id)

    try:
        entry = system.ledger.record_payment(
            loan_id=request.loan_id,
            entry_date=request.entry_date,
            amount=parse_amount(request.amount)
        )

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if entry is None:
        return {"entry": None, "message": "Collection cleared"}

    return {"entry": entry.to_dict(), "message": "Collection recorded successfully"}


@router.get("")
async def list_payments(
    loan_id: str,
    up_to: Optional[str] = None,
    since: Optional[str] = None,
    system: CollectionSystem = Depends(get_collection_system)
):
    """A loan's ledger entries in date order"""
    _require_loan(system, loan_id)

    try:
        entries = system.ledger.get_entries(loan_id, up_to=up_to, since=since)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"entries": [entry.to_dict() for entry in entries]}


@router.get("/history/{account_no}")
async def payment_history(
    account_no: str,
    since: Optional[str] = None,
    up_to: Optional[str] = None,
    system: CollectionSystem = Depends(get_collection_system)
):
    """An account's collections between two days, newest first"""
    if not system.loan_manager.get_loan_by_account_no(account_no):
        raise HTTPException(status_code=404, detail="Loan not found")

    try:
        loan, entries = system.loan_manager.payment_history(account_no, since=since, up_to=up_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "loan_id": loan.id,
        "account_no": loan.account_no,
        "entries": [entry.to_dict() for entry in entries]
    }


@router.delete("")
async def delete_payment(
    loan_id: str,
    entry_date: str,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Remove a day's entry; a missing entry is not an error"""
    try:
        deleted = system.ledger.delete_payment(loan_id, entry_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"deleted": deleted}


@router.delete("/all")
async def delete_all_payments(
    loan_id: str,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Remove every ledger entry of a loan"""
    removed = system.ledger.delete_entries_for_loan(loan_id)
    return {"entries_removed": removed}
