from typing import Optional
from circdesk.core import holds, ledger
from circdesk.core.auth import authorize
from circdesk.core.models import Hold, Loan, Notification, OldLoan, Patron
from circdesk.core.exceptions import PatronNotFoundError


class CircdeskAPI:
    """Read side of the engine used by the API layer."""

    DEFAULT_LIMIT = 50

    @classmethod
    def get_patron(cls, db, patron_id: int, actor=None) -> Patron:
        patron = Patron.get(db, patron_id)
        if patron is None:
            raise PatronNotFoundError(f"Patron {patron_id} not found")
        authorize(actor, patron.id, "view accounts")
        return patron

    @classmethod
    def get_loans(cls, db, patron_id: int, actor=None) -> list:
        """Open loans of a patron, soonest due first."""
        patron = cls.get_patron(db, patron_id, actor=actor)
        return db.query(Loan).filter(
            Loan.patron_id == patron.id,
            Loan.returned_at == None
        ).order_by(Loan.due_at, Loan.id).all()

    @classmethod
    def get_history(cls, db, patron_id: int, actor=None, offset: Optional[int] = None,
                    limit: Optional[int] = None) -> list:
        patron = cls.get_patron(db, patron_id, actor=actor)
        return db.query(OldLoan).filter(
            OldLoan.patron_id == patron.id
        ).order_by(OldLoan.returned_at.desc(), OldLoan.id.desc()).offset(
            offset or 0).limit(limit or cls.DEFAULT_LIMIT).all()

    @classmethod
    def get_account(cls, db, patron_id: int, actor=None) -> dict:
        patron = cls.get_patron(db, patron_id, actor=actor)
        return ledger.account(db, patron.id)

    @classmethod
    def get_holds(cls, db, patron_id: int, actor=None, offset: Optional[int] = None,
                  limit: Optional[int] = None) -> list:
        """Every hold the patron has placed, newest first, cancelled and
        fulfilled ones included."""
        patron = cls.get_patron(db, patron_id, actor=actor)
        return db.query(Hold).filter(
            Hold.patron_id == patron.id
        ).order_by(Hold.placed_at.desc(), Hold.id.desc()).offset(
            offset or 0).limit(limit or cls.DEFAULT_LIMIT).all()

    @classmethod
    def get_queue(cls, db, title_id: int) -> list:
        return holds.queue(db, title_id)

    @classmethod
    def get_notifications(cls, db, patron_id: int, actor=None) -> list:
        patron = cls.get_patron(db, patron_id, actor=actor)
        return db.query(Notification).filter(
            Notification.patron_id == patron.id
        ).order_by(Notification.date.desc(), Notification.id.desc()).limit(cls.DEFAULT_LIMIT).all()
