#!/usr/bin/env python

"""
    Configurations for Circdesk

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('CIRCDESK_HOST', 'localhost')
PORT = int(os.environ.get('CIRCDESK_PORT', 8080))
WORKERS = int(os.environ.get('CIRCDESK_WORKERS', 1))
DEBUG = bool(int(os.environ.get('CIRCDESK_DEBUG', 0)))
LOG_LEVEL = os.environ.get('CIRCDESK_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('CIRCDESK_SSL_CRT')
SSL_KEY = os.environ.get('CIRCDESK_SSL_KEY')

# Secret used to sign actor tokens handed out by the identity service
SEED = os.environ.get('CIRCDESK_SEED', 'circdesk-dev-seed')
TOKEN_TTL = int(os.environ.get('CIRCDESK_TOKEN_TTL', 604800))  # 1 week

# Returned loans move to old_loans; when off, closed loans are reused in place
ARCHIVE_RETURNED_LOANS = os.environ.get('CIRCDESK_ARCHIVE_LOANS', 'true').lower() == 'true'

OPTIONS = {
    'host': HOST,
    'port': PORT,
    'log_level': LOG_LEVEL,
    'reload': DEBUG,
    'workers': WORKERS,
}
if SSL_CRT and SSL_KEY:
    OPTIONS['ssl_keyfile'] = SSL_KEY
    OPTIONS['ssl_certfile'] = SSL_CRT
    SCHEME = 'https'

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'circdesk'),
}

# Database configuration
DB_URI = (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

__all__ = [
    'SCHEME', 'HOST', 'PORT', 'DEBUG', 'OPTIONS', 'LOG_LEVEL', 'DB_URI', 'DB_CONFIG',
    'SEED', 'TOKEN_TTL', 'ARCHIVE_RETURNED_LOANS', 'TESTING'
]
