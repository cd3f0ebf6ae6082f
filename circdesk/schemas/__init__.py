from circdesk.schemas.loan import Loan, ReturnReceipt
from circdesk.schemas.hold import Hold
from circdesk.schemas.ledger import LedgerEntry, Account
from circdesk.schemas.item import Item, ItemStatusChange
from circdesk.schemas.notification import Notification

__all__ = [
    "Loan", "ReturnReceipt", "Hold", "LedgerEntry", "Account",
    "Item", "ItemStatusChange", "Notification"
]
