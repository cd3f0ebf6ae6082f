#!/usr/bin/env python

"""
    Fine assessment for Circdesk.

    Overdue fines are posted while a return is processed; replacement and
    damage fees are posted when staff change the condition of a loaned
    item. Both run inside the caller's transaction, so a failure here
    aborts the whole return or status change.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

import math
import logging
from decimal import Decimal
from typing import Optional
from circdesk.core.models import ItemStatus, LedgerEntry, LedgerKind
from circdesk.core.policy import Policy
from circdesk.core.utils import to_money

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

CONDITION_CHARGES = {
    ItemStatus.LOST: (LedgerKind.LOST_FEE, Decimal("1")),
    ItemStatus.DAMAGED: (LedgerKind.DAMAGE_FEE, Decimal("0.5")),
}


def days_overdue(due_at, returned_at) -> int:
    """Whole days late, any part of a day counting as a full day."""
    late = (returned_at - due_at).total_seconds()
    if late <= 0:
        return 0
    return math.ceil(late / SECONDS_PER_DAY)


def overdue_amount(days: int, rate) -> Decimal:
    return to_money(Decimal(days) * Decimal(str(rate)))


def assess_overdue(db, loan, returned_at) -> Optional[LedgerEntry]:
    """Posts one overdue fine for a loan returned after its due date."""
    days = days_overdue(loan.due_at, returned_at)
    if days <= 0:
        return None
    amount = overdue_amount(days, Policy.fine_rate(db))
    if amount <= 0:
        return None
    entry = LedgerEntry.charge(
        db, LedgerKind.OVERDUE_FINE, amount,
        patron_id=loan.patron_id,
        item_id=loan.item_id,
        loan_id=loan.id,
        description=f"Overdue fine - {days} days late",
    )
    logger.info(f"Overdue fine {amount} posted for loan {loan.id} ({days} days late)")
    return entry


def assess_condition(db, loan, item, status) -> Optional[LedgerEntry]:
    """Posts the replacement (lost) or damage fee for a loaned item.

    Lost costs the full replacement price, damaged half of it, falling back
    to the title's default replacement cost. At most one fee of each kind is
    ever posted against a loan.
    """
    if status not in CONDITION_CHARGES:
        return None
    kind, multiplier = CONDITION_CHARGES[status]
    if LedgerEntry.exists_for_loan(db, loan.id, kind):
        return None

    amount = to_money(Decimal(str(item.replacement_cost(Policy.REPLACEMENT_COST))) * multiplier)
    if amount <= 0:
        return None

    if status == ItemStatus.LOST:
        description = f"Replacement fee for lost item {item.barcode}"
    else:
        description = f"Damage fee for item {item.barcode}"
    entry = LedgerEntry.charge(
        db, kind, amount,
        patron_id=loan.patron_id,
        item_id=item.id,
        loan_id=loan.id,
        description=description,
    )
    logger.info(f"{kind.value} {amount} posted for loan {loan.id}")
    return entry
