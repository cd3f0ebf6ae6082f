#!/usr/bin/env python

"""
    Circulation engine for Circdesk: checkout, renew and return.

    Each operation is a single transaction made of explicit, ordered steps
    (policy checks, hold queue, fines, archiving). A failed precondition
    raises before anything is committed.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.exc import IntegrityError
from circdesk.configs import ARCHIVE_RETURNED_LOANS
from circdesk.core import fines, holds, notify
from circdesk.core.auth import authorize, require_staff
from circdesk.core.db import transaction
from circdesk.core.models import (
    Hold, Item, ItemStatus, LedgerEntry, Loan, OldLoan, Patron
)
from circdesk.core.policy import Policy
from circdesk.core.utils import as_utc, to_money
from circdesk.core.exceptions import (
    AlreadyOnLoanError,
    CheckoutLimitReachedError,
    InvalidStatusChangeError,
    ItemNotFoundError,
    ItemReservedError,
    ItemUnavailableError,
    LoanNotFoundError,
    MembershipExpiredError,
    MissingReferenceError,
    NotOnLoanError,
    OutstandingFinesError,
    PatronNotFoundError,
    PatronRestrictedError,
    RenewalLimitReachedError,
)

logger = logging.getLogger(__name__)


@dataclass
class ReturnResult:
    loan: object
    fine: Optional[LedgerEntry] = None
    hold: Optional[Hold] = None


@dataclass
class StatusChange:
    item: Item
    charge: Optional[LedgerEntry] = None
    loan: Optional[object] = None


def checkout(db, patron_id: int, item_id: Optional[int] = None, barcode: Optional[str] = None,
             actor=None, now=None) -> Loan:
    """Lends an item (by id or barcode) to a patron.

    The patron row is locked first so that the open-loan count and the
    insert that follows cannot interleave with another desk's checkout
    for the same patron.
    """
    now = as_utc(now)
    today = now.date()
    if item_id is None and not barcode:
        raise MissingReferenceError("Either item_id or barcode is required")

    with transaction(db):
        patron = Patron.get(db, patron_id, lock=True)
        if patron is None:
            raise PatronNotFoundError(f"Patron {patron_id} not found")
        authorize(actor, patron.id, "check out items")
        if patron.is_restricted(today):
            raise PatronRestrictedError(f"Patron is restricted until {patron.restricted_until.isoformat()}")
        if patron.is_expired(today):
            raise MembershipExpiredError(f"Membership expired on {patron.expires_on.isoformat()}")

        item = Item.resolve(db, item_id=item_id, barcode=barcode, lock=True)
        if item is None:
            raise ItemNotFoundError(f"Item {item_id or barcode} not found")

        current = Loan.for_item(db, item.id, lock=True)
        if item.status == ItemStatus.ON_LOAN or (current is not None and current.returned_at is None):
            raise AlreadyOnLoanError(f"Item {item.barcode} is already checked out")
        if not item.loanable:
            raise ItemUnavailableError(f"Item {item.barcode} is not for loan")
        if item.status != ItemStatus.AVAILABLE:
            raise ItemUnavailableError(f"Item {item.barcode} is currently {item.status.value}")

        if Hold.blocking(db, item, patron.id) is not None:
            raise ItemReservedError("Item is reserved for another patron")

        limit = Policy.max_checkouts(patron)
        if patron.open_loan_count(db) >= limit:
            raise CheckoutLimitReachedError(f"Patron reached maximum checkout limit ({limit})")

        ceiling = Policy.max_fine_allowed(db)
        if ceiling is not None:
            balance = to_money(patron.outstanding_balance(db))
            if balance > ceiling:
                raise OutstandingFinesError(f"Outstanding fines ({balance}) exceed limit ({ceiling})")

        due_at = now + datetime.timedelta(days=Policy.loan_period(patron))
        if current is not None:
            # closed loan kept in place: reopen the row instead of inserting
            loan = current
            loan.patron_id = patron.id
            loan.issued_at = now
            loan.due_at = due_at
            loan.returned_at = None
            loan.renewal_count = 0
            loan.last_renewed_at = None
            loan.overdue_notified_at = None
        else:
            loan = Loan(patron_id=patron.id, item_id=item.id, issued_at=now, due_at=due_at, created_at=now)
            db.add(loan)
            try:
                db.flush()
            except IntegrityError as e:
                raise AlreadyOnLoanError(f"Item {item.barcode} is already checked out") from e

        item.set_status(ItemStatus.ON_LOAN, now)
        item.due_at = due_at
        item.times_loaned = (item.times_loaned or 0) + 1

        holds.fulfil(db, patron, item, now)

    logger.info(f"Loan {loan.id}: item {loan.item_id} to patron {loan.patron_id}, due {loan.due_at}")
    return loan


def renew(db, loan_id: Optional[int] = None, item_id: Optional[int] = None, barcode: Optional[str] = None,
          actor=None, now=None) -> Loan:
    """Extends an open loan by one loan period.

    The new due date is counted from the current due date, not from now,
    so a badly overdue loan may still be overdue after renewal.
    """
    now = as_utc(now)
    with transaction(db):
        loan, item = _open_loan(db, loan_id, item_id, barcode)
        authorize(actor, loan.patron_id, "renew items")

        limit = Policy.max_renewals(db)
        if loan.renewal_count >= limit:
            raise RenewalLimitReachedError(f"Maximum renewal limit ({limit}) reached")

        if Hold.blocking(db, item, loan.patron_id) is not None:
            raise ItemReservedError("Item is reserved for another patron")

        loan.due_at = loan.due_at + datetime.timedelta(days=Policy.loan_period(loan.patron))
        loan.renewal_count = (loan.renewal_count or 0) + 1
        loan.last_renewed_at = now
        loan.overdue_notified_at = None
        item.due_at = loan.due_at
        item.times_renewed = (item.times_renewed or 0) + 1

    logger.info(f"Loan {loan.id} renewed ({loan.renewal_count}/{limit}), due {loan.due_at}")
    return loan


def return_item(db, loan_id: Optional[int] = None, item_id: Optional[int] = None,
                barcode: Optional[str] = None, actor=None, now=None) -> ReturnResult:
    """Checks an item back in.

    Steps, in order: close the loan, assess any overdue fine, put the item
    back on the shelf, archive the loan, offer the copy to the next hold.
    """
    now = as_utc(now)
    with transaction(db):
        loan, item = _open_loan(db, loan_id, item_id, barcode)
        authorize(actor, loan.patron_id, "return items")

        loan.returned_at = now
        fine = fines.assess_overdue(db, loan, now)
        record = _close(db, loan, item, ItemStatus.DAMAGED if item.damaged else ItemStatus.AVAILABLE, now)

        hold = None
        if item.is_borrowable:
            hold = holds.promote(db, item=item, now=now)

    logger.info(f"Loan {record.id} returned; item {item.id} now {item.status.value}")
    return ReturnResult(loan=record, fine=fine, hold=hold)


def set_item_status(db, status, item_id: Optional[int] = None, barcode: Optional[str] = None,
                    actor=None, now=None) -> StatusChange:
    """Administrative status change, posting lost/damaged fees against an open loan.

    Marking a loaned item lost closes its loan. Marking it damaged flags the
    copy and leaves the loan open; the return then shelves it as damaged.
    Re-applying a status never posts a second fee.
    """
    now = as_utc(now)
    require_staff(actor, "change item status")
    try:
        status = ItemStatus(status)
    except ValueError:
        raise InvalidStatusChangeError(f"Unknown item status {status!r}")
    if status == ItemStatus.ON_LOAN:
        raise InvalidStatusChangeError("Items go on loan through checkout only")

    with transaction(db):
        item = Item.resolve(db, item_id=item_id, barcode=barcode, lock=True)
        if item is None:
            raise ItemNotFoundError(f"Item {item_id or barcode} not found")

        loan = Loan.for_item(db, item.id, lock=True)
        if loan is not None and loan.returned_at is not None:
            loan = None

        charge = None
        record = None
        if loan is not None:
            if status in (ItemStatus.AVAILABLE, ItemStatus.WITHDRAWN):
                raise InvalidStatusChangeError(
                    f"Item {item.barcode} is on loan; return it before marking it {status.value}")
            charge = fines.assess_condition(db, loan, item, status)
            if status == ItemStatus.LOST:
                loan.returned_at = now
                record = _close(db, loan, item, ItemStatus.LOST, now)
            else:
                item.damaged = True
        else:
            was_available = item.status == ItemStatus.AVAILABLE
            item.set_status(status, now)
            item.damaged = status == ItemStatus.DAMAGED
            if status == ItemStatus.AVAILABLE:
                if item.is_borrowable:
                    holds.promote(db, item=item, now=now)
            elif was_available:
                holds.release(db, item, now)

    logger.info(f"Item {item.id} status set to {status.value}")
    return StatusChange(item=item, charge=charge, loan=record)


def notify_overdue(db, actor=None, now=None) -> list:
    """Emits one overdue notice per open loan past its due date."""
    now = as_utc(now)
    require_staff(actor, "send overdue notices")
    with transaction(db):
        loans = db.query(Loan).filter(
            Loan.returned_at == None,
            Loan.due_at < now,
            Loan.overdue_notified_at == None
        ).with_for_update(skip_locked=True).all()
        for loan in loans:
            loan.overdue_notified_at = now
            notify.enqueue(
                db, notify.ITEM_OVERDUE, loan.patron_id,
                f"Item {loan.item.barcode} was due on {loan.due_at.date().isoformat()}",
                loan_id=loan.id, item_id=loan.item_id,
            )
    if loans:
        logger.info(f"Sent {len(loans)} overdue notices")
    return loans


def _open_loan(db, loan_id, item_id, barcode):
    """Finds an open loan and its item, locking the item row before the
    loan row like every other circulation operation."""
    if loan_id is not None:
        found = Loan.get(db, loan_id)
        if found is None:
            if OldLoan.get(db, loan_id) is not None:
                raise NotOnLoanError(f"Loan {loan_id} has already been returned")
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        item = Item.get(db, found.item_id, lock=True)
        loan = Loan.for_item(db, item.id, lock=True)
        if loan is None or loan.id != found.id:
            raise NotOnLoanError(f"Loan {loan_id} has already been returned")
    elif item_id is not None or barcode:
        item = Item.resolve(db, item_id=item_id, barcode=barcode, lock=True)
        if item is None:
            raise ItemNotFoundError(f"Item {item_id or barcode} not found")
        loan = Loan.for_item(db, item.id, lock=True)
        if loan is None:
            raise NotOnLoanError(f"Item {item.barcode} is not on loan")
    else:
        raise MissingReferenceError("Provide a loan id, item id or barcode")

    if loan.returned_at is not None:
        raise NotOnLoanError(f"Loan {loan.id} has already been returned")
    return loan, item


def _close(db, loan, item, status, now):
    """Shelves the item in `status` and archives the (already closed) loan."""
    item.set_status(status, now)
    item.due_at = None
    item.last_borrowed_at = now
    if ARCHIVE_RETURNED_LOANS:
        return OldLoan.archive(db, loan, now)
    return loan
