#!/usr/bin/env python

"""
    Circdesk, the circulation and reservation engine for library items.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

__version__ = "0.1.0"
