"""
Pydantic schemas for API requests
"""

from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from ..amounts import amount_from_string
from ..config import get_config


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    """Amount field as an operator typed it, e.g. "₹1,250"; None stays None"""
    if value is None:
        return None
    return amount_from_string(value, symbol=get_config().currency_symbol)


# Loan schemas
class CreateLoanRequest(BaseModel):
    account_no: str
    holder_name: str
    holder_name_local: Optional[str] = None
    file_category: str
    slot_index: int = Field(..., description="Row within the collection file")
    period_unit: str = Field(..., description="Period unit (daily, monthly, pending)")
    start_date: str = Field(..., description="ISO date the first installment falls due")
    installment_amount: Optional[str] = Field(None, description="Decimal amount as string (daily, monthly)")
    fixed_target_amount: Optional[str] = Field(None, description="Decimal amount as string (pending)")


class UpdateLoanRequest(BaseModel):
    account_no: Optional[str] = None
    holder_name: Optional[str] = None
    holder_name_local: Optional[str] = None
    file_category: Optional[str] = None
    slot_index: Optional[int] = None
    period_unit: Optional[str] = None
    start_date: Optional[str] = None
    installment_amount: Optional[str] = None
    fixed_target_amount: Optional[str] = None


class AssignSlotRequest(BaseModel):
    slot_index: int = Field(..., description="Row to move the loan to; its occupant swaps rows")


class ReorderFileRequest(BaseModel):
    period_unit: str
    file_category: str
    loan_ids: List[str] = Field(..., description="Every loan of the file, in the new row order")


# Ledger schemas
class RecordPaymentRequest(BaseModel):
    loan_id: str
    entry_date: str = Field(..., description="ISO date the collection is attributed to")
    amount: str = Field(..., description="Decimal amount as string; zero clears the day")


# Collection book schemas
class CommitSheetRequest(BaseModel):
    as_of_date: str = Field(..., description="ISO date of the collection sheet")
    amounts: Dict[str, str] = Field(..., description="Decimal amount as string by loan id")
