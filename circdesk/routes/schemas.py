from decimal import Decimal
from pydantic import BaseModel, Field, model_validator
from typing import Optional
from circdesk.core.models import ItemStatus


class ItemReference(BaseModel):
    item_id: Optional[int] = None
    barcode: Optional[str] = Field(None, min_length=1, max_length=20)

class CheckoutRequest(ItemReference):
    patron_id: int

    @model_validator(mode="after")
    def check_item(self):
        if self.item_id is None and not self.barcode:
            raise ValueError("Either item_id or barcode is required")
        return self

class LoanReference(ItemReference):
    loan_id: Optional[int] = None

    @model_validator(mode="after")
    def check_reference(self):
        if self.loan_id is None and self.item_id is None and not self.barcode:
            raise ValueError("Provide loan_id, item_id, or barcode")
        return self

class HoldRequest(BaseModel):
    patron_id: int
    title_id: int
    item_id: Optional[int] = None

class PaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    payment_type: Optional[str] = Field(None, max_length=50)

class ItemStatusRequest(BaseModel):
    status: ItemStatus
