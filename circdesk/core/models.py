#!/usr/bin/env python

"""
    Circulation Models for Circdesk,
    including patrons, titles, physical items, loans, holds and the
    ledger of charges and payments.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

import enum
from sqlalchemy import (
    Column, String, Text, Boolean, Integer, Numeric, Date, DateTime,
    ForeignKey, Index, Enum as SQLAlchemyEnum, func, or_, and_, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from circdesk.core.db import Base
from circdesk.core.utils import utcnow


def _values(enum_cls):
    return [member.value for member in enum_cls]


class ItemStatus(enum.Enum):
    AVAILABLE = "available"
    ON_LOAN = "on_loan"
    LOST = "lost"
    DAMAGED = "damaged"
    WITHDRAWN = "withdrawn"

class HoldFound(enum.Enum):
    """Fulfillment codes; a NULL column means the hold is still waiting in the queue."""
    READY = "W"
    IN_PROCESS = "P"

class LedgerKind(enum.Enum):
    OVERDUE_FINE = "overdue-fine"
    LOST_FEE = "lost-fee"
    DAMAGE_FEE = "damage-fee"
    RENTAL = "rental"
    PAYMENT = "payment"
    CREDIT = "credit"

class LedgerStatus(enum.Enum):
    OPEN = "open"
    PARTIALLY_PAID = "partially-paid"
    PAID = "paid"

CHARGE_KINDS = (
    LedgerKind.OVERDUE_FINE, LedgerKind.LOST_FEE,
    LedgerKind.DAMAGE_FEE, LedgerKind.RENTAL
)


class Category(Base):
    __tablename__ = 'categories'

    code = Column(String(10), primary_key=True)
    description = Column(Text, nullable=False)
    max_checkouts = Column(Integer)
    loan_period_days = Column(Integer)
    created_at = Column(DateTime, default=utcnow)


class Patron(Base):
    __tablename__ = 'patrons'

    id = Column(Integer, primary_key=True)
    card_number = Column(String(32), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    category_code = Column(String(10), ForeignKey('categories.code'))
    enrolled_on = Column(Date)
    expires_on = Column(Date)
    restricted_until = Column(Date)
    restriction_comment = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    category = relationship('Category')

    def is_restricted(self, today):
        return self.restricted_until is not None and self.restricted_until >= today

    def is_expired(self, today):
        return self.expires_on is not None and self.expires_on < today

    def open_loan_count(self, db):
        return db.query(Loan).filter(
            Loan.patron_id == self.id,
            Loan.returned_at == None
        ).count()

    def outstanding_balance(self, db):
        total = db.query(func.coalesce(func.sum(LedgerEntry.amount_outstanding), 0)).filter(
            LedgerEntry.patron_id == self.id,
            LedgerEntry.kind.in_(CHARGE_KINDS),
            LedgerEntry.amount_outstanding > 0
        ).scalar()
        return total


class Title(Base):
    __tablename__ = 'titles'

    id = Column(Integer, primary_key=True)
    title = Column(Text, nullable=False)
    author = Column(Text)
    isbn = Column(String(30))
    default_replacement_cost = Column(Numeric(10, 2))
    created_at = Column(DateTime, default=utcnow)

    items = relationship('Item', back_populates='title')


class Item(Base):
    __tablename__ = 'items'

    id = Column(Integer, primary_key=True)
    title_id = Column(Integer, ForeignKey('titles.id', ondelete='CASCADE'), nullable=False, index=True)
    barcode = Column(String(20), unique=True, nullable=False)
    status = Column(SQLAlchemyEnum(ItemStatus), default=ItemStatus.AVAILABLE, nullable=False)
    status_changed_at = Column(DateTime)
    loanable = Column(Boolean, default=True, nullable=False)
    damaged = Column(Boolean, default=False, nullable=False)
    replacement_price = Column(Numeric(10, 2))
    due_at = Column(DateTime)
    last_borrowed_at = Column(DateTime)
    times_loaned = Column(Integer, default=0, nullable=False)
    times_renewed = Column(Integer, default=0, nullable=False)
    times_held = Column(Integer, default=0, nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    title = relationship('Title', back_populates='items')

    @hybrid_property
    def is_borrowable(self):
        """True if the copy can be handed out right now."""
        return self.loanable and self.status == ItemStatus.AVAILABLE

    @classmethod
    def resolve(cls, db, item_id=None, barcode=None, lock=False):
        """Looks an item up by id, or by barcode when no id is given."""
        query = db.query(cls)
        if item_id is not None:
            query = query.filter(cls.id == item_id)
        elif barcode:
            query = query.filter(cls.barcode == barcode)
        else:
            return None
        if lock:
            query = query.with_for_update().populate_existing()
        return query.one_or_none()

    def set_status(self, status, now):
        if self.status != status:
            self.status = status
            self.status_changed_at = now

    def replacement_cost(self, fallback):
        if self.replacement_price is not None:
            return self.replacement_price
        if self.title is not None and self.title.default_replacement_cost is not None:
            return self.title.default_replacement_cost
        return fallback


class Loan(Base):
    """An open checkout. At most one row per item, enforced by the store."""
    __tablename__ = 'loans'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True)
    patron_id = Column(Integer, ForeignKey('patrons.id', ondelete='RESTRICT'), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='RESTRICT'), nullable=False, unique=True)
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    due_at = Column(DateTime, nullable=False)
    returned_at = Column(DateTime)
    renewal_count = Column(Integer, default=0, nullable=False)
    last_renewed_at = Column(DateTime)
    overdue_notified_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    patron = relationship('Patron')
    item = relationship('Item')

    @classmethod
    def for_item(cls, db, item_id, lock=False):
        query = db.query(cls).filter(cls.item_id == item_id)
        if lock:
            query = query.with_for_update().populate_existing()
        return query.one_or_none()


class OldLoan(Base):
    """Historical record of a completed checkout, keyed by the original loan id."""
    __tablename__ = 'old_loans'

    id = Column(Integer, primary_key=True, autoincrement=False)
    patron_id = Column(Integer, ForeignKey('patrons.id', ondelete='SET NULL'), index=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='SET NULL'), index=True)
    issued_at = Column(DateTime)
    due_at = Column(DateTime, nullable=False)
    returned_at = Column(DateTime)
    renewal_count = Column(Integer, default=0)
    last_renewed_at = Column(DateTime)
    created_at = Column(DateTime)
    archived_at = Column(DateTime, default=utcnow)

    @classmethod
    def archive(cls, db, loan, now):
        """Moves a closed loan into history and removes the live row."""
        old = cls(
            id=loan.id,
            patron_id=loan.patron_id,
            item_id=loan.item_id,
            issued_at=loan.issued_at,
            due_at=loan.due_at,
            returned_at=loan.returned_at,
            renewal_count=loan.renewal_count,
            last_renewed_at=loan.last_renewed_at,
            created_at=loan.created_at,
            archived_at=now,
        )
        db.add(old)
        db.delete(loan)
        return old


class Hold(Base):
    __tablename__ = 'holds'
    __table_args__ = (
        # one open (not cancelled, not being fulfilled) hold per patron and title
        Index(
            'uq_holds_open_patron_title', 'patron_id', 'title_id', unique=True,
            postgresql_where=text("cancelled_at IS NULL AND (found IS NULL OR found = 'W')"),
            sqlite_where=text("cancelled_at IS NULL AND (found IS NULL OR found = 'W')"),
        ),
    )

    id = Column(Integer, primary_key=True)
    patron_id = Column(Integer, ForeignKey('patrons.id', ondelete='CASCADE'), nullable=False, index=True)
    title_id = Column(Integer, ForeignKey('titles.id', ondelete='CASCADE'), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'))
    # copy set aside on the hold shelf once the hold is ready for pickup
    waiting_item_id = Column(Integer, ForeignKey('items.id', ondelete='SET NULL'))
    placed_at = Column(DateTime, default=utcnow, nullable=False)
    priority = Column(Integer, nullable=False, default=1)
    expires_on = Column(Date)
    cancelled_at = Column(DateTime)
    found = Column(SQLAlchemyEnum(HoldFound, values_callable=_values, native_enum=False, length=1))
    waiting_since = Column(DateTime)
    fulfilled_at = Column(DateTime)
    notes = Column(Text)

    patron = relationship('Patron')
    title = relationship('Title')
    item = relationship('Item', foreign_keys=[item_id])

    @classmethod
    def open_holds(cls, db):
        """Holds that are waiting in the queue or waiting on the hold shelf."""
        return db.query(cls).filter(
            cls.cancelled_at == None,
            or_(cls.found == None, cls.found == HoldFound.READY)
        )

    @classmethod
    def blocking(cls, db, item, patron_id):
        """First open hold by another patron that has a claim on `item`
        ahead of `patron_id`.

        A ready hold with this copy set aside always has the claim. A copy
        set aside for the patron's own ready hold is theirs. Otherwise a
        queued hold the copy could serve (on this copy, or title-wide)
        blocks when it comes before the patron's own hold in queue order,
        or when the patron has no hold at all.
        """
        serves_item = or_(
            cls.item_id == item.id,
            and_(cls.item_id == None, cls.title_id == item.title_id),
        )
        others = cls.open_holds(db).filter(cls.patron_id != patron_id)

        ready = others.filter(
            cls.found == HoldFound.READY,
            cls.waiting_item_id == item.id
        ).first()
        if ready is not None:
            return ready

        own = cls.open_holds(db).filter(
            cls.patron_id == patron_id,
            cls.title_id == item.title_id,
            or_(cls.item_id == None, cls.item_id == item.id)
        ).order_by(cls.priority, cls.placed_at, cls.id).first()
        if own is not None and own.found == HoldFound.READY and own.waiting_item_id == item.id:
            return None

        queued = others.filter(cls.found == None, serves_item)
        if own is not None:
            queued = queued.filter(or_(
                cls.priority < own.priority,
                and_(cls.priority == own.priority, cls.placed_at < own.placed_at),
                and_(cls.priority == own.priority, cls.placed_at == own.placed_at, cls.id < own.id),
            ))
        return queued.order_by(cls.priority, cls.placed_at, cls.id).first()


class LedgerEntry(Base):
    __tablename__ = 'ledger_entries'

    id = Column(Integer, primary_key=True)
    patron_id = Column(Integer, ForeignKey('patrons.id', ondelete='SET NULL'), index=True)
    item_id = Column(Integer, ForeignKey('items.id', ondelete='SET NULL'), index=True)
    # no FK: the loan may live in loans or old_loans depending on timing
    loan_id = Column(Integer, index=True)
    settles_id = Column(Integer, ForeignKey('ledger_entries.id'))
    kind = Column(SQLAlchemyEnum(LedgerKind), nullable=False)
    status = Column(SQLAlchemyEnum(LedgerStatus), default=LedgerStatus.OPEN, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    amount_outstanding = Column(Numeric(10, 2), nullable=False)
    description = Column(Text)
    payment_type = Column(String(50))
    manager_id = Column(Integer)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @classmethod
    def charge(cls, db, kind, amount, patron_id, item_id=None, loan_id=None, description=None):
        entry = cls(
            patron_id=patron_id,
            item_id=item_id,
            loan_id=loan_id,
            kind=kind,
            status=LedgerStatus.OPEN,
            amount=amount,
            amount_outstanding=amount,
            description=description,
        )
        db.add(entry)
        return entry

    @classmethod
    def exists_for_loan(cls, db, loan_id, kind):
        return db.query(cls).filter(cls.loan_id == loan_id, cls.kind == kind).first()


class SystemPreference(Base):
    __tablename__ = 'systempreferences'

    variable = Column(String(50), primary_key=True)
    value = Column(Text)
    explanation = Column(Text)
    type = Column(String(20))
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    patron_id = Column(Integer, ForeignKey('patrons.id', ondelete='CASCADE'), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    date = Column(DateTime, default=utcnow)
    is_read = Column(Boolean, default=False, nullable=False)
