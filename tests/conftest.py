#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.conftest
    ~~~~~~~~~~~~~~

    Shared fixtures: a fresh in-memory store per test and small
    factories for the circulation models.

    :copyright: (c) 2015 by Authors.
    :license: see LICENSE for more details.
"""

import os
os.environ["TESTING"] = "true"

import datetime
import itertools
import pytest
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from circdesk.core.db import Base
from circdesk.core import models  # noqa: F401
from circdesk.core.auth import Actor, STAFF
from circdesk.core.models import (
    Category, Item, ItemStatus, Patron, SystemPreference, Title
)

TODAY = datetime.date(2024, 10, 1)

_serial = itertools.count(1)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()

@pytest.fixture
def db_session(engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def staff():
    return Actor(id=900, role=STAFF)

@pytest.fixture
def category(db_session):
    cat = Category(code="ADULT", description="Adult patron", max_checkouts=5, loan_period_days=14)
    db_session.add(cat)
    db_session.commit()
    return cat

@pytest.fixture
def make_patron(db_session, category):
    def _make(**kwargs):
        n = next(_serial)
        kwargs.setdefault("card_number", f"C{n:06d}")
        kwargs.setdefault("name", f"Patron {n}")
        kwargs.setdefault("category_code", category.code)
        kwargs.setdefault("enrolled_on", TODAY - datetime.timedelta(days=365))
        kwargs.setdefault("expires_on", TODAY + datetime.timedelta(days=3650))
        patron = Patron(**kwargs)
        db_session.add(patron)
        db_session.commit()
        return patron
    return _make

@pytest.fixture
def make_title(db_session):
    def _make(**kwargs):
        kwargs.setdefault("title", f"Title {next(_serial)}")
        title = Title(**kwargs)
        db_session.add(title)
        db_session.commit()
        return title
    return _make

@pytest.fixture
def make_item(db_session, make_title):
    def _make(title=None, **kwargs):
        title = title or make_title()
        kwargs.setdefault("barcode", f"B{next(_serial):06d}")
        kwargs.setdefault("status", ItemStatus.AVAILABLE)
        kwargs.setdefault("replacement_price", Decimal("20.00"))
        item = Item(title_id=title.id, **kwargs)
        db_session.add(item)
        db_session.commit()
        return item
    return _make

@pytest.fixture
def set_pref(db_session):
    def _set(variable, value):
        pref = db_session.get(SystemPreference, variable)
        if pref is None:
            pref = SystemPreference(variable=variable)
            db_session.add(pref)
        pref.value = value
        db_session.commit()
    return _set