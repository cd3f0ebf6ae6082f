#!/usr/bin/env python

"""
    Hold queue for Circdesk.

    Holds are queued per title. `priority` is a placement counter
    (max open priority + 1), never renumbered; ties are broken by
    placement time. A hold narrowed to one copy competes in the same
    title-wide order but can only be served by that copy.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import logging
from typing import Optional
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from circdesk.core import notify
from circdesk.core.auth import authorize, require_staff
from circdesk.core.db import transaction
from circdesk.core.models import Hold, HoldFound, Item, ItemStatus, Patron, Title
from circdesk.core.policy import Policy
from circdesk.core.utils import append_note, as_utc
from circdesk.core.exceptions import (
    DuplicateHoldError,
    HoldNotActiveError,
    HoldNotFoundError,
    ItemNotFoundError,
    ItemNotOfTitleError,
    MissingReferenceError,
    PatronNotFoundError,
    TitleNotFoundError,
)

logger = logging.getLogger(__name__)

QUEUE_ORDER = (Hold.priority, Hold.placed_at, Hold.id)


def place(db, patron_id: int, title_id: int, item_id: Optional[int] = None, actor=None, now=None) -> Hold:
    """Queues `patron_id` for `title_id`, optionally narrowed to one copy.

    Raises:
        PatronNotFoundError, TitleNotFoundError, ItemNotFoundError: unknown references.
        ItemNotOfTitleError: the copy belongs to another title.
        DuplicateHoldError: the patron already has an open hold on the title.
    """
    now = as_utc(now)
    with transaction(db):
        patron = Patron.get(db, patron_id)
        if patron is None:
            raise PatronNotFoundError(f"Patron {patron_id} not found")
        authorize(actor, patron.id, "place holds")

        # title row lock serializes priority assignment
        title = Title.get(db, title_id, lock=True)
        if title is None:
            raise TitleNotFoundError(f"Title {title_id} not found")

        if item_id is not None:
            item = Item.get(db, item_id)
            if item is None:
                raise ItemNotFoundError(f"Item {item_id} not found")
            if item.title_id != title.id:
                raise ItemNotOfTitleError(f"Item {item_id} is not a copy of title {title_id}")

        if Hold.open_holds(db).filter(Hold.patron_id == patron.id, Hold.title_id == title.id).first():
            raise DuplicateHoldError("Patron already has an active hold for this title")

        top = db.query(func.max(Hold.priority)).filter(
            Hold.title_id == title.id,
            Hold.cancelled_at == None,
            or_(Hold.found == None, Hold.found == HoldFound.READY)
        ).scalar()

        hold = Hold(
            patron_id=patron.id,
            title_id=title.id,
            item_id=item_id,
            placed_at=now,
            priority=(top or 0) + 1,
            expires_on=now.date() + datetime.timedelta(days=Policy.hold_expiry_days(db)),
        )
        db.add(hold)
        try:
            db.flush()
        except IntegrityError as e:
            raise DuplicateHoldError("Patron already has an active hold for this title") from e

    logger.info(f"Hold {hold.id} placed by patron {patron_id} on title {title_id} at priority {hold.priority}")
    return hold


def cancel(db, hold_id: int, actor=None, now=None) -> Hold:
    """Cancels a hold without deleting it or renumbering the queue.
    A copy that was set aside for the hold is offered to the next waiter.
    """
    now = as_utc(now)
    with transaction(db):
        hold = Hold.get(db, hold_id)
        if hold is None:
            raise HoldNotFoundError(f"Hold {hold_id} not found")
        authorize(actor, hold.patron_id, "cancel holds")
        item = Item.get(db, hold.waiting_item_id, lock=True) if hold.waiting_item_id is not None else None
        hold = Hold.get(db, hold_id, lock=True)
        if hold.cancelled_at is not None or hold.found == HoldFound.IN_PROCESS:
            raise HoldNotActiveError(f"Hold {hold_id} is no longer active")

        set_aside = hold.found == HoldFound.READY and item is not None and hold.waiting_item_id == item.id
        hold.cancelled_at = now
        hold.notes = append_note(hold.notes, "Cancelled via API")

        if set_aside and item.is_borrowable:
            promote(db, item=item, now=now)

    logger.info(f"Hold {hold_id} cancelled")
    return hold


def promote(db, item: Optional[Item] = None, title_id: Optional[int] = None, now=None) -> Optional[Hold]:
    """Marks the head of the queue ready for pickup on a freed copy.

    Runs inside the caller's transaction. Given only a title, the first
    available copy not already set aside is used. Returns the promoted
    hold, or None when nobody is waiting.
    """
    now = as_utc(now)
    if item is None:
        if title_id is None:
            raise MissingReferenceError("promote needs an item or a title")
        item = free_copy(db, title_id, lock=True)
        if item is None:
            return None

    hold = db.query(Hold).filter(
        Hold.cancelled_at == None,
        Hold.found == None,
        Hold.title_id == item.title_id,
        or_(Hold.item_id == None, Hold.item_id == item.id)
    ).order_by(*QUEUE_ORDER).with_for_update().first()
    if hold is None:
        return None

    hold.found = HoldFound.READY
    hold.waiting_since = now
    hold.waiting_item_id = item.id
    hold.expires_on = now.date() + datetime.timedelta(days=Policy.hold_expiry_days(db))
    item.times_held = (item.times_held or 0) + 1

    title = item.title.title if item.title is not None else f"Item {item.barcode}"
    notify.enqueue(
        db, notify.HOLD_READY, hold.patron_id,
        f"'{title}' is waiting for pickup until {hold.expires_on.isoformat()}",
        hold_id=hold.id, item_id=item.id, barcode=item.barcode,
    )
    logger.info(f"Hold {hold.id} ready for pickup on item {item.id}")
    return hold


def free_copy(db, title_id: int, exclude: Optional[int] = None, lock: bool = False) -> Optional[Item]:
    """First shelved, loanable copy of a title that no ready hold has claimed.
    With `lock`, copies another transaction holds are skipped."""
    set_aside = select(Hold.waiting_item_id).where(
        Hold.cancelled_at == None,
        Hold.found == HoldFound.READY,
        Hold.waiting_item_id != None
    )
    query = db.query(Item).filter(
        Item.title_id == title_id,
        Item.status == ItemStatus.AVAILABLE,
        Item.loanable == True,
        ~Item.id.in_(set_aside)
    )
    if exclude is not None:
        query = query.filter(Item.id != exclude)
    if lock:
        query = query.with_for_update(skip_locked=True)
    return query.order_by(Item.id).first()



def fulfil(db, patron, item, now) -> list:
    """Marks the patron's own open holds satisfied by checking out `item`.

    Runs inside the checkout transaction. If a different copy had been
    set aside for the patron, that copy goes to the next waiter. Such
    copies are locked before the holds, keeping the item-then-hold order.
    """
    mine = Hold.open_holds(db).filter(
        Hold.patron_id == patron.id,
        Hold.title_id == item.title_id,
        or_(Hold.item_id == None, Hold.item_id == item.id)
    )
    elsewhere = sorted({
        hold.waiting_item_id for hold in mine.all()
        if hold.found == HoldFound.READY and hold.waiting_item_id not in (None, item.id)
    })
    copies = [Item.get(db, item_id, lock=True) for item_id in elsewhere]
    holds = mine.with_for_update().populate_existing().all()

    released = set()
    for hold in holds:
        if hold.found == HoldFound.READY and hold.waiting_item_id not in (None, item.id):
            released.add(hold.waiting_item_id)
        hold.found = HoldFound.IN_PROCESS
        hold.fulfilled_at = now
        logger.info(f"Hold {hold.id} fulfilled by checkout of item {item.id}")

    if released:
        db.flush()
        for other in copies:
            if other is not None and other.id in released and other.is_borrowable:
                promote(db, item=other, now=now)
    return holds


def expire_waiting(db, actor=None, now=None) -> list:
    """Cancels holds left on the hold shelf longer than the pickup window,
    then offers each freed copy to the next waiter.

    Meant for a periodic scheduler. The sweep itself only touches
    ready-for-pickup holds; each re-offer runs in its own transaction that
    locks the copy first, the same order checkout and return use.
    """
    now = as_utc(now)
    require_staff(actor, "expire holds")
    with transaction(db):
        days = Policy.hold_expiry_days(db)
        cutoff = now - datetime.timedelta(days=days)
        stale = db.query(Hold).filter(
            Hold.cancelled_at == None,
            Hold.found == HoldFound.READY,
            Hold.waiting_since < cutoff
        ).with_for_update(skip_locked=True).all()
        freed = []
        for hold in stale:
            hold.cancelled_at = now
            hold.notes = append_note(hold.notes, f"Expired - not picked up within {days} days")
            if hold.waiting_item_id is not None:
                freed.append(hold.waiting_item_id)

    if stale:
        logger.info(f"Expired {len(stale)} holds waiting longer than {days} days")
    for item_id in freed:
        reoffer(db, item_id, now)
    return stale


def reoffer(db, item_id: int, now=None) -> Optional[Hold]:
    """Offers a shelved copy to the next waiter unless a ready hold
    already has it set aside."""
    now = as_utc(now)
    with transaction(db):
        item = Item.get(db, item_id, lock=True)
        if item is None or not item.is_borrowable:
            return None
        claimed = Hold.open_holds(db).filter(
            Hold.found == HoldFound.READY,
            Hold.waiting_item_id == item.id
        ).first()
        if claimed is not None:
            return None
        hold = promote(db, item=item, now=now)
    return hold


def queue(db, title_id: int) -> list:
    """Open holds for a title in service order."""
    if Title.get(db, title_id) is None:
        raise TitleNotFoundError(f"Title {title_id} not found")
    return Hold.open_holds(db).filter(Hold.title_id == title_id).order_by(*QUEUE_ORDER).all()


def release(db, item, now) -> Optional[Hold]:
    """Returns ready holds to the queue when their set-aside copy leaves
    the shelf (withdrawn, lost, damaged) and offers another copy instead.
    """
    ready = db.query(Hold).filter(
        Hold.cancelled_at == None,
        Hold.found == HoldFound.READY,
        Hold.waiting_item_id == item.id
    )
    if ready.first() is None:
        return None
    spare = free_copy(db, item.title_id, exclude=item.id, lock=True)
    for hold in ready.with_for_update().populate_existing().all():
        hold.found = None
        hold.waiting_since = None
        hold.waiting_item_id = None
        logger.info(f"Hold {hold.id} back in queue: item {item.id} left the shelf")
    db.flush()
    if spare is None:
        return None
    return promote(db, item=spare, now=now)

