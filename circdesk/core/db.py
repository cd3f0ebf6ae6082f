import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from circdesk.configs import DB_URI, DEBUG
from circdesk.core.exceptions import ConcurrentUpdateError

logger = logging.getLogger(__name__)

# PostgreSQL serialization_failure and deadlock_detected
CONFLICT_SQLSTATES = ("40001", "40P01")

# Only use client_encoding for PostgreSQL, not SQLite
engine_kwargs = {'echo': DEBUG}
if not DB_URI.startswith('sqlite'):
    engine_kwargs['client_encoding'] = 'utf8'
engine = create_engine(DB_URI, **engine_kwargs)
SessionLocal = sessionmaker(bind=engine, autoflush=False)
session = scoped_session(SessionLocal)

class CircdeskBase:
    @classmethod
    def get(cls, db, pk, lock=False):
        """Primary key lookup; `lock` takes a row lock for the
        remainder of the transaction (no-op on SQLite). A locked read refreshes
        any copy already in the session."""
        query = db.query(cls).filter(cls.id == pk)
        if lock:
            query = query.with_for_update().populate_existing()
        return query.one_or_none()

Base = declarative_base(cls=CircdeskBase)

def init(bind=engine):
    try:
        # models must be registered on Base before create_all
        from circdesk.core import models  # noqa: F401
        Base.metadata.create_all(bind=bind)
        return session
    except Exception as e:
        logger.warning(f"[WARNING] Database initialization failed: {e}")

@contextmanager
def transaction(db):
    """All-or-nothing unit of work: commits when the block finishes,
    rolls back on any exception. Constraint violations, deadlocks and
    serialization failures are reported as a Conflict.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Store rejected a conflicting write: {e.orig}")
        raise ConcurrentUpdateError(f"Conflicting concurrent update: {e.orig}") from e
    except DBAPIError as e:
        db.rollback()
        if getattr(e.orig, "pgcode", None) in CONFLICT_SQLSTATES:
            logger.warning(f"Transaction lost a lock race: {e.orig}")
            raise ConcurrentUpdateError(f"Conflicting concurrent update: {e.orig}") from e
        raise
    except Exception:
        db.rollback()
        raise
