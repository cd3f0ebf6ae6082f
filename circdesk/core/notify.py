#!/usr/bin/env python

"""
    Patron notifications for Circdesk.

    Notifications are written to the `notifications` table inside the
    circulation transaction, then handed to subscribers (email, SMS, ...)
    once that transaction commits. A rollback discards them. Subscribers
    are fire-and-forget: a failing subscriber is logged and never reaches
    the caller.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from collections import defaultdict
from sqlalchemy import event
from sqlalchemy.orm import Session
from circdesk.core.models import Notification

logger = logging.getLogger(__name__)

HOLD_READY = "hold_ready"
ITEM_OVERDUE = "item_overdue"

PENDING_KEY = "circdesk.pending_notifications"

_subscribers = defaultdict(list)

def subscribe(event_type, callback):
    _subscribers[event_type].append(callback)

def unsubscribe(event_type, callback):
    if callback in _subscribers[event_type]:
        _subscribers[event_type].remove(callback)

def enqueue(db, event_type, patron_id, message, **payload):
    """Records a notification and schedules its delivery for after commit."""
    note = Notification(patron_id=patron_id, type=event_type, message=message)
    db.add(note)
    payload.update(patron_id=patron_id, message=message)
    db.info.setdefault(PENDING_KEY, []).append((event_type, payload))
    return note

def dispatch(event_type, payload):
    for callback in list(_subscribers[event_type]):
        try:
            callback(event_type, payload)
        except Exception:
            logger.exception(f"Notification subscriber failed for {event_type}")

@event.listens_for(Session, "after_commit")
def _deliver_pending(db):
    for event_type, payload in db.info.pop(PENDING_KEY, []):
        logger.info(f"Notify patron {payload['patron_id']}: {event_type}")
        dispatch(event_type, payload)

@event.listens_for(Session, "after_rollback")
def _discard_pending(db):
    db.info.pop(PENDING_KEY, None)
