from pydantic import BaseModel
from typing import Optional
from datetime import date, datetime
from circdesk.core.models import HoldFound

class Hold(BaseModel):
    id: int
    patron_id: int
    title_id: int
    item_id: Optional[int] = None
    waiting_item_id: Optional[int] = None
    placed_at: datetime
    priority: int
    expires_on: Optional[date] = None
    cancelled_at: Optional[datetime] = None
    found: Optional[HoldFound] = None
    waiting_since: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True
