from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from circdesk.schemas.hold import Hold
from circdesk.schemas.ledger import LedgerEntry

class Loan(BaseModel):
    id: int
    patron_id: int
    item_id: int
    issued_at: datetime
    due_at: datetime
    returned_at: Optional[datetime] = None
    renewal_count: int = 0
    last_renewed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ReturnReceipt(BaseModel):
    loan: Loan
    fine: Optional[LedgerEntry] = None
    hold: Optional[Hold] = None

    class Config:
        from_attributes = True
