from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from circdesk.core.models import ItemStatus
from circdesk.schemas.ledger import LedgerEntry

class Item(BaseModel):
    id: int
    title_id: int
    barcode: str
    status: ItemStatus
    loanable: bool
    damaged: bool
    due_at: Optional[datetime] = None
    times_loaned: int = 0
    times_renewed: int = 0
    times_held: int = 0

    class Config:
        from_attributes = True

class ItemStatusChange(BaseModel):
    item: Item
    charge: Optional[LedgerEntry] = None

    class Config:
        from_attributes = True
