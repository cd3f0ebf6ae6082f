from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from circdesk.core.models import LedgerKind, LedgerStatus

class LedgerEntry(BaseModel):
    id: int
    patron_id: Optional[int] = None
    item_id: Optional[int] = None
    loan_id: Optional[int] = None
    settles_id: Optional[int] = None
    kind: LedgerKind
    status: LedgerStatus
    amount: Decimal
    amount_outstanding: Decimal
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class Account(BaseModel):
    patron_id: int
    balance: Decimal
    entries: List[LedgerEntry]
