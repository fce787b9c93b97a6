"""
Collection book endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends

from .system import CollectionSystem, get_collection_system
from .schemas import CommitSheetRequest, parse_amount
from ..periods import PeriodUnit


router = APIRouter()


@router.get("")
async def get_collection_sheet(
    as_of: str,
    period_unit: Optional[str] = None,
    file_category: Optional[str] = None,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Collection sheet for a day, one row per loan in slot order"""
    try:
        sheet = system.collection_book.build_sheet(
            as_of,
            period_unit=PeriodUnit(period_unit) if period_unit else None,
            file_category=file_category
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return sheet.to_dict()


@router.post("/commit")
async def commit_collection_sheet(
    request: CommitSheetRequest,
    system: CollectionSystem = Depends(get_collection_system)
):
    """Record the day's collection for every listed loan"""
    try:
        amounts = {loan_id: parse_amount(amount) for loan_id, amount in request.amounts.items()}
        results = system.collection_book.commit_sheet(request.as_of_date, amounts)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "as_of_date": request.as_of_date,
        "entries": {
            loan_id: entry.to_dict() if entry else None
            for loan_id, entry in results.items()
        },
        "message": "Collection sheet committed successfully"
    }
