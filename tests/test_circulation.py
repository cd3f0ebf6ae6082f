#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_circulation
    ~~~~~~~~~~~~~~~~~~~~~~

    Checkout, renew, return and item status changes.

    :copyright: (c) 2015 by Authors.
    :license: see LICENSE for more details.
"""

import datetime
import pytest
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy import event
from circdesk.core import circulation, holds
from circdesk.core.auth import Actor
from circdesk.core.models import (
    HoldFound, Item, ItemStatus, LedgerEntry, LedgerKind, Loan, OldLoan
)
from circdesk.core.exceptions import (
    ActorNotPermittedError,
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

NOW = datetime.datetime(2024, 10, 1, 12, 0, 0)


def test_checkout_by_barcode(db_session, make_patron, make_item):
    patron = make_patron()
    item = make_item()
    loan = circulation.checkout(db_session, patron.id, barcode=item.barcode, now=NOW)

    assert loan.patron_id == patron.id
    assert loan.item_id == item.id
    assert loan.issued_at == NOW
    assert loan.due_at == NOW + datetime.timedelta(days=14)
    assert loan.returned_at is None
    db_session.refresh(item)
    assert item.status == ItemStatus.ON_LOAN
    assert item.due_at == loan.due_at
    assert item.times_loaned == 1

def test_checkout_requires_item_reference(db_session, make_patron):
    with pytest.raises(MissingReferenceError):
        circulation.checkout(db_session, make_patron().id, now=NOW)

def test_checkout_unknown_references(db_session, make_patron, make_item):
    item = make_item()
    with pytest.raises(PatronNotFoundError):
        circulation.checkout(db_session, 4242, item_id=item.id, now=NOW)
    with pytest.raises(ItemNotFoundError):
        circulation.checkout(db_session, make_patron().id, barcode="NOPE", now=NOW)

def test_checkout_limit_reached(db_session, make_patron, make_item):
    patron = make_patron()
    for _ in range(5):
        circulation.checkout(db_session, patron.id, item_id=make_item().id, now=NOW)
    sixth = make_item()
    with pytest.raises(CheckoutLimitReachedError):
        circulation.checkout(db_session, patron.id, item_id=sixth.id, now=NOW)
    assert patron.open_loan_count(db_session) == 5
    db_session.refresh(sixth)
    assert sixth.status == ItemStatus.AVAILABLE

def test_restricted_patron(db_session, make_patron, make_item):
    patron = make_patron(restricted_until=NOW.date())
    with pytest.raises(PatronRestrictedError):
        circulation.checkout(db_session, patron.id, item_id=make_item().id, now=NOW)

def test_expired_membership(db_session, make_patron, make_item):
    patron = make_patron(expires_on=NOW.date() - datetime.timedelta(days=1))
    with pytest.raises(MembershipExpiredError):
        circulation.checkout(db_session, patron.id, item_id=make_item().id, now=NOW)

def test_item_already_on_loan(db_session, make_patron, make_item):
    item = make_item()
    circulation.checkout(db_session, make_patron().id, item_id=item.id, now=NOW)
    with pytest.raises(AlreadyOnLoanError):
        circulation.checkout(db_session, make_patron().id, item_id=item.id, now=NOW)
    assert db_session.query(Loan).filter(Loan.item_id == item.id).count() == 1

@pytest.mark.parametrize("kwargs", [
    {"loanable": False},
    {"status": ItemStatus.WITHDRAWN},
    {"status": ItemStatus.LOST},
])
def test_item_unavailable(db_session, make_patron, make_item, kwargs):
    item = make_item(**kwargs)
    with pytest.raises(ItemUnavailableError):
        circulation.checkout(db_session, make_patron().id, item_id=item.id, now=NOW)

def test_outstanding_fines_block(db_session, make_patron, make_item, set_pref):
    set_pref("max_fine_allowed", "5.00")
    patron = make_patron()
    LedgerEntry.charge(db_session, LedgerKind.OVERDUE_FINE, Decimal("5.50"), patron_id=patron.id)
    db_session.commit()
    with pytest.raises(OutstandingFinesError):
        circulation.checkout(db_session, patron.id, item_id=make_item().id, now=NOW)

def test_fines_without_ceiling_do_not_block(db_session, make_patron, make_item):
    patron = make_patron()
    LedgerEntry.charge(db_session, LedgerKind.OVERDUE_FINE, Decimal("99.00"), patron_id=patron.id)
    db_session.commit()
    assert circulation.checkout(db_session, patron.id, item_id=make_item().id, now=NOW)

def test_reserved_item(db_session, make_patron, make_item):
    item = make_item()
    a, b = make_patron(), make_patron()
    hold = holds.place(db_session, a.id, item.title_id, item_id=item.id, now=NOW)

    with pytest.raises(ItemReservedError):
        circulation.checkout(db_session, b.id, item_id=item.id, now=NOW)

    loan = circulation.checkout(db_session, a.id, item_id=item.id, now=NOW)
    assert loan.patron_id == a.id
    db_session.refresh(hold)
    assert hold.found == HoldFound.IN_PROCESS
    assert hold.fulfilled_at == NOW

def test_patron_may_only_act_for_self(db_session, make_patron, make_item):
    a, b = make_patron(), make_patron()
    item = make_item()
    with pytest.raises(ActorNotPermittedError):
        circulation.checkout(db_session, a.id, item_id=item.id, actor=Actor(id=b.id), now=NOW)
    loan = circulation.checkout(db_session, a.id, item_id=item.id, actor=Actor(id=a.id), now=NOW)
    with pytest.raises(ActorNotPermittedError):
        circulation.renew(db_session, loan_id=loan.id, actor=Actor(id=b.id), now=NOW)

def test_renew_from_current_due_date(db_session, make_patron, make_item):
    loan = circulation.checkout(db_session, make_patron().id, item_id=make_item().id, now=NOW)
    first_due = loan.due_at
    later = NOW + datetime.timedelta(days=30)
    renewed = circulation.renew(db_session, loan_id=loan.id, now=later)
    assert renewed.due_at == first_due + datetime.timedelta(days=14)
    # still overdue: extension counts from the old due date
    assert renewed.due_at < later
    assert renewed.renewal_count == 1
    assert renewed.last_renewed_at == later

def test_renewal_limit(db_session, make_patron, make_item):
    item = make_item()
    loan = circulation.checkout(db_session, make_patron().id, item_id=item.id, now=NOW)
    for _ in range(3):
        circulation.renew(db_session, barcode=item.barcode, now=NOW)
    with pytest.raises(RenewalLimitReachedError):
        circulation.renew(db_session, loan_id=loan.id, now=NOW)
    db_session.refresh(loan)
    assert loan.renewal_count == 3
    db_session.refresh(item)
    assert item.times_renewed == 3

def test_renew_blocked_by_queued_hold(db_session, make_patron, make_item):
    item = make_item()
    loan = circulation.checkout(db_session, make_patron().id, item_id=item.id, now=NOW)
    holds.place(db_session, make_patron().id, item.title_id, now=NOW)
    with pytest.raises(ItemReservedError):
        circulation.renew(db_session, loan_id=loan.id, now=NOW)

def test_renew_unknown_and_returned_loans(db_session, make_patron, make_item):
    loan = circulation.checkout(db_session, make_patron().id, item_id=make_item().id, now=NOW)
    loan_id = loan.id
    circulation.return_item(db_session, loan_id=loan_id, now=NOW)
    with pytest.raises(NotOnLoanError):
        circulation.renew(db_session, loan_id=loan_id, now=NOW)
    with pytest.raises(LoanNotFoundError):
        circulation.renew(db_session, loan_id=9999, now=NOW)

def test_return_archives_loan(db_session, make_patron, make_item):
    patron = make_patron()
    item = make_item()
    loan = circulation.checkout(db_session, patron.id, item_id=item.id, now=NOW)
    loan_id = loan.id
    back = NOW + datetime.timedelta(days=3)

    result = circulation.return_item(db_session, barcode=item.barcode, now=back)

    assert result.fine is None
    assert result.hold is None
    assert isinstance(result.loan, OldLoan)
    assert result.loan.id == loan_id
    assert result.loan.returned_at == back
    assert db_session.get(Loan, loan_id) is None
    db_session.refresh(item)
    assert item.status == ItemStatus.AVAILABLE
    assert item.due_at is None
    assert item.last_borrowed_at == back
    assert patron.open_loan_count(db_session) == 0

def test_return_item_not_on_loan(db_session, make_item):
    with pytest.raises(NotOnLoanError):
        circulation.return_item(db_session, item_id=make_item().id, now=NOW)
    with pytest.raises(MissingReferenceError):
        circulation.return_item(db_session, now=NOW)

def test_loan_ids_not_reused_after_archive(db_session, make_patron, make_item):
    patron = make_patron()
    item = make_item()
    first = circulation.checkout(db_session, patron.id, item_id=item.id, now=NOW).id
    circulation.return_item(db_session, loan_id=first, now=NOW)
    second = circulation.checkout(db_session, patron.id, item_id=item.id, now=NOW).id
    assert second != first

def test_closed_loans_reused_in_place(db_session, make_patron, make_item):
    a, b = make_patron(), make_patron()
    item = make_item()
    with patch("circdesk.core.circulation.ARCHIVE_RETURNED_LOANS", False):
        loan = circulation.checkout(db_session, a.id, item_id=item.id, now=NOW)
        loan_id = loan.id
        result = circulation.return_item(db_session, loan_id=loan_id, now=NOW)
        assert result.loan.id == loan_id
        assert db_session.query(OldLoan).count() == 0

        again = circulation.checkout(db_session, b.id, item_id=item.id, now=NOW)
        assert again.id == loan_id
        assert again.patron_id == b.id
        assert again.returned_at is None
        assert again.renewal_count == 0
    assert a.open_loan_count(db_session) == 0
    assert b.open_loan_count(db_session) == 1

def test_item_status_matches_loans(db_session, make_patron, make_item):
    patron = make_patron()
    items = [make_item() for _ in range(3)]
    for item in items:
        circulation.checkout(db_session, patron.id, item_id=item.id, now=NOW)
    circulation.return_item(db_session, item_id=items[0].id, now=NOW)
    circulation.renew(db_session, item_id=items[1].id, now=NOW)

    for item in items:
        db_session.refresh(item)
        open_loan = db_session.query(Loan).filter(
            Loan.item_id == item.id, Loan.returned_at == None).count()
        assert (item.status == ItemStatus.ON_LOAN) == (open_loan == 1)

def test_mark_loaned_item_lost(db_session, make_patron, make_item, staff):
    patron = make_patron()
    item = make_item(replacement_price=Decimal("30.00"))
    loan = circulation.checkout(db_session, patron.id, item_id=item.id, now=NOW)
    loan_id = loan.id
    late = NOW + datetime.timedelta(days=40)

    change = circulation.set_item_status(db_session, "lost", item_id=item.id, actor=staff, now=late)

    assert change.item.status == ItemStatus.LOST
    assert change.charge.kind == LedgerKind.LOST_FEE
    assert change.charge.amount == Decimal("30.00")
    assert change.loan.id == loan_id
    assert db_session.get(Loan, loan_id) is None
    # lost closes the loan without an overdue fine
    kinds = [e.kind for e in db_session.query(LedgerEntry).all()]
    assert kinds == [LedgerKind.LOST_FEE]

    again = circulation.set_item_status(db_session, ItemStatus.LOST, item_id=item.id, actor=staff, now=late)
    assert again.charge is None
    assert db_session.query(LedgerEntry).count() == 1

def test_mark_loaned_item_damaged(db_session, make_patron, make_item, make_title, staff):
    title = make_title(default_replacement_cost=Decimal("15.00"))
    item = make_item(title=title, replacement_price=None)
    circulation.checkout(db_session, make_patron().id, item_id=item.id, now=NOW)

    change = circulation.set_item_status(db_session, ItemStatus.DAMAGED, item_id=item.id, actor=staff, now=NOW)
    assert change.charge.kind == LedgerKind.DAMAGE_FEE
    assert change.charge.amount == Decimal("7.50")
    assert change.loan is None
    db_session.refresh(item)
    assert item.status == ItemStatus.ON_LOAN
    assert item.damaged is True

    assert circulation.set_item_status(db_session, ItemStatus.DAMAGED, item_id=item.id, actor=staff, now=NOW).charge is None

    circulation.return_item(db_session, item_id=item.id, now=NOW)
    db_session.refresh(item)
    assert item.status == ItemStatus.DAMAGED

def test_status_changes_refused_while_on_loan(db_session, make_patron, make_item, staff):
    item = make_item()
    circulation.checkout(db_session, make_patron().id, item_id=item.id, now=NOW)
    for status in (ItemStatus.AVAILABLE, ItemStatus.WITHDRAWN, ItemStatus.ON_LOAN):
        with pytest.raises(InvalidStatusChangeError):
            circulation.set_item_status(db_session, status, item_id=item.id, actor=staff, now=NOW)
    with pytest.raises(InvalidStatusChangeError):
        circulation.set_item_status(db_session, "shredded", item_id=item.id, actor=staff, now=NOW)

def test_status_change_requires_staff(db_session, make_patron, make_item):
    patron = make_patron()
    with pytest.raises(ActorNotPermittedError):
        circulation.set_item_status(db_session, ItemStatus.WITHDRAWN, item_id=make_item().id,
                                    actor=Actor(id=patron.id), now=NOW)

def test_idle_item_status_change(db_session, make_item, staff):
    item = make_item()
    change = circulation.set_item_status(db_session, ItemStatus.DAMAGED, barcode=item.barcode, actor=staff, now=NOW)
    assert change.charge is None
    assert change.item.status == ItemStatus.DAMAGED
    assert change.item.status_changed_at == NOW

    repaired = circulation.set_item_status(db_session, ItemStatus.AVAILABLE, item_id=item.id, actor=staff, now=NOW)
    assert repaired.item.status == ItemStatus.AVAILABLE
    assert repaired.item.damaged is False

def test_overdue_notices_sent_once(db_session, make_patron, make_item, staff):
    patron = make_patron()
    overdue = circulation.checkout(db_session, patron.id, item_id=make_item().id, now=NOW)
    circulation.checkout(db_session, patron.id, item_id=make_item().id, now=NOW + datetime.timedelta(days=10))
    overdue_id = overdue.id
    later = NOW + datetime.timedelta(days=15)

    sent = circulation.notify_overdue(db_session, actor=staff, now=later)
    assert [loan.id for loan in sent] == [overdue_id]
    assert circulation.notify_overdue(db_session, actor=staff, now=later) == []

    with pytest.raises(ActorNotPermittedError):
        circulation.notify_overdue(db_session, actor=Actor(id=patron.id), now=later)

@pytest.fixture
def locked_tables(db_session):
    """Records, in order, the mapped classes read with FOR UPDATE."""
    seen = []
    def record(state):
        if state.is_select and state.statement._for_update_arg is not None:
            seen.extend(mapper.class_ for mapper in state.all_mappers)
    event.listen(db_session, "do_orm_execute", record)
    try:
        yield seen
    finally:
        event.remove(db_session, "do_orm_execute", record)

@pytest.mark.parametrize("operation", ["checkout", "renew", "return", "lost"])
def test_item_locked_before_loan(db_session, make_patron, make_item, staff, locked_tables, operation):
    patron = make_patron()
    item = make_item()
    if operation != "checkout":
        loan_id = circulation.checkout(db_session, patron.id, item_id=item.id, now=NOW).id
        locked_tables.clear()

    if operation == "checkout":
        circulation.checkout(db_session, patron.id, item_id=item.id, now=NOW)
    elif operation == "renew":
        circulation.renew(db_session, loan_id=loan_id, now=NOW)
    elif operation == "return":
        circulation.return_item(db_session, loan_id=loan_id, now=NOW)
    else:
        circulation.set_item_status(db_session, ItemStatus.LOST, item_id=item.id, actor=staff, now=NOW)

    assert Item in locked_tables and Loan in locked_tables
    assert locked_tables.index(Item) < locked_tables.index(Loan)
