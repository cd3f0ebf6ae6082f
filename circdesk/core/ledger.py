import logging
from decimal import Decimal, InvalidOperation
from circdesk.core.auth import require_staff
from circdesk.core.db import transaction
from circdesk.core.models import CHARGE_KINDS, LedgerEntry, LedgerKind, LedgerStatus
from circdesk.core.utils import as_utc, to_money
from circdesk.core.exceptions import (
    InvalidAmountError,
    LedgerEntryNotFoundError,
    NotPayableError,
    NothingOutstandingError,
    OverpaymentError,
)

logger = logging.getLogger(__name__)


def pay(db, entry_id: int, amount, actor=None, payment_type=None, now=None) -> LedgerEntry:
    """Applies a payment against one outstanding charge.

    The payment itself is recorded as a negative entry pointing at the
    charge it settles; the charge's outstanding balance and status are
    updated in the same transaction.
    """
    now = as_utc(now)
    require_staff(actor, "record payments")
    try:
        amount = to_money(amount)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(f"Invalid payment amount {amount!r}")
    if amount <= 0:
        raise InvalidAmountError("Payment amount must be positive")

    with transaction(db):
        entry = LedgerEntry.get(db, entry_id, lock=True)
        if entry is None:
            raise LedgerEntryNotFoundError(f"Ledger entry {entry_id} not found")
        if entry.kind not in CHARGE_KINDS:
            raise NotPayableError(f"Ledger entry {entry_id} is a {entry.kind.value}, not a charge")
        outstanding = to_money(entry.amount_outstanding)
        if outstanding <= 0:
            raise NothingOutstandingError("Nothing outstanding to pay")
        if amount > outstanding:
            raise OverpaymentError(f"Payment {amount} exceeds outstanding amount {outstanding}")

        remaining = outstanding - amount
        entry.amount_outstanding = remaining
        entry.status = LedgerStatus.PAID if remaining == 0 else LedgerStatus.PARTIALLY_PAID
        entry.payment_type = payment_type or entry.payment_type
        entry.manager_id = actor.id if actor is not None else entry.manager_id

        payment = LedgerEntry(
            patron_id=entry.patron_id,
            item_id=entry.item_id,
            loan_id=entry.loan_id,
            settles_id=entry.id,
            kind=LedgerKind.PAYMENT,
            status=LedgerStatus.PAID,
            amount=-amount,
            amount_outstanding=Decimal("0.00"),
            description=f"Payment towards entry {entry.id}",
            payment_type=payment_type,
            manager_id=entry.manager_id,
            created_at=now,
        )
        db.add(payment)

    logger.info(f"Payment {amount} applied to ledger entry {entry_id}; {remaining} outstanding")
    return entry


def account(db, patron_id: int) -> dict:
    """All ledger lines for a patron and the outstanding balance."""
    entries = db.query(LedgerEntry).filter(
        LedgerEntry.patron_id == patron_id
    ).order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).all()
    balance = sum(
        (to_money(e.amount_outstanding) for e in entries if e.kind in CHARGE_KINDS),
        Decimal("0.00")
    )
    return {"patron_id": patron_id, "balance": balance, "entries": entries}
