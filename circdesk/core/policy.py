#!/usr/bin/env python

"""
    Borrowing policy for Circdesk.

    Category rules (checkout limit, loan period) come from the patron's
    category row; global rules (fine rate, renewal cap, hold pickup window)
    come from `systempreferences`. Every lookup falls back to a documented
    default so that missing configuration never blocks circulation.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional
from circdesk.core.db import transaction
from circdesk.core.models import Category, SystemPreference

logger = logging.getLogger(__name__)


class Policy:

    LOAN_PERIOD_DAYS = 14
    MAX_CHECKOUTS = 5
    FINE_PER_DAY = Decimal("0.25")
    MAX_RENEWALS = 3
    HOLD_EXPIRY_DAYS = 7
    MAX_FINE_ALLOWED = None
    REPLACEMENT_COST = Decimal("25.00")

    @classmethod
    def loan_period(cls, patron) -> int:
        category = getattr(patron, "category", None)
        if category is None or category.loan_period_days is None:
            return cls.LOAN_PERIOD_DAYS
        return category.loan_period_days

    @classmethod
    def max_checkouts(cls, patron) -> int:
        category = getattr(patron, "category", None)
        if category is None or category.max_checkouts is None:
            return cls.MAX_CHECKOUTS
        return category.max_checkouts

    @classmethod
    def fine_rate(cls, db) -> Decimal:
        return cls._preference(db, "fine_per_day", Decimal, cls.FINE_PER_DAY)

    @classmethod
    def max_renewals(cls, db) -> int:
        return cls._preference(db, "max_renewals", int, cls.MAX_RENEWALS)

    @classmethod
    def hold_expiry_days(cls, db) -> int:
        return cls._preference(db, "hold_expiry_days", int, cls.HOLD_EXPIRY_DAYS)

    @classmethod
    def max_fine_allowed(cls, db) -> Optional[Decimal]:
        return cls._preference(db, "max_fine_allowed", Decimal, cls.MAX_FINE_ALLOWED)

    @classmethod
    def _preference(cls, db, variable, cast, default):
        pref = db.query(SystemPreference).filter(SystemPreference.variable == variable).one_or_none()
        if pref is None or pref.value is None or not pref.value.strip():
            return default
        try:
            return cast(pref.value.strip())
        except (ValueError, InvalidOperation):
            logger.warning(f"Unparsable preference {variable}={pref.value!r}; using {default}")
            return default


DEFAULT_CATEGORIES = (
    # code, description, max_checkouts, loan_period_days
    ("ADULT", "Adult patron", 5, 14),
    ("CHILD", "Child patron", 3, 7),
    ("STAFF", "Library staff", 20, 30),
)

DEFAULT_PREFERENCES = (
    # variable, value, explanation, type
    ("fine_per_day", str(Policy.FINE_PER_DAY), "Overdue fine charged per day late", "Decimal"),
    ("max_renewals", str(Policy.MAX_RENEWALS), "Times a loan may be renewed", "Integer"),
    ("hold_expiry_days", str(Policy.HOLD_EXPIRY_DAYS), "Days a ready hold waits for pickup", "Integer"),
    ("max_fine_allowed", "", "Outstanding balance above which checkout is refused; empty for no limit", "Decimal"),
)


def seed(db) -> int:
    """Inserts the default categories and preferences that are missing.
    Existing rows are left untouched. Returns the number of rows added."""
    added = 0
    with transaction(db):
        for code, description, max_checkouts, loan_period_days in DEFAULT_CATEGORIES:
            if db.get(Category, code) is None:
                db.add(Category(code=code, description=description,
                                max_checkouts=max_checkouts, loan_period_days=loan_period_days))
                added += 1
        for variable, value, explanation, kind in DEFAULT_PREFERENCES:
            if db.get(SystemPreference, variable) is None:
                db.add(SystemPreference(variable=variable, value=value, explanation=explanation, type=kind))
                added += 1
    logger.info(f"Seeded {added} default policy rows")
    return added
