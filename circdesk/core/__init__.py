#!/usr/bin/env python

"""
    Core module for Circdesk, db & circulation engine

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

from circdesk.core import db as database

db = database.init()

__all__ = ["db", "database"]
