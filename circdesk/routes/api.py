#!/usr/bin/env python

"""
    API routes for Circdesk,
    translating HTTP requests into circulation engine calls.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""

from typing import Optional, Generator, List
from fastapi import (
    APIRouter,
    Depends,
    Header,
    HTTPException,
    status,
)
from circdesk.core import auth, circulation, holds, ledger
from circdesk.core import db as database
from circdesk.core.api import CircdeskAPI
from circdesk.routes.schemas import (
    CheckoutRequest,
    HoldRequest,
    ItemStatusRequest,
    LoanReference,
    PaymentRequest,
)
from circdesk import schemas

router = APIRouter()


def get_db() -> Generator:
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_actor(authorization: Optional[str] = Header(None)) -> auth.Actor:
    """Resolves the bearer token issued by the identity service."""
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1]
    actor = auth.verify_token(token)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


@router.get('/', status_code=status.HTTP_200_OK)
async def home():
    return {"status": "ok"}

@router.post('/circulation/checkout', response_model=schemas.Loan, status_code=status.HTTP_201_CREATED)
def checkout(body: CheckoutRequest, db=Depends(get_db), actor=Depends(get_actor)):
    return circulation.checkout(
        db, body.patron_id, item_id=body.item_id, barcode=body.barcode, actor=actor)

@router.post('/circulation/renew', response_model=schemas.Loan)
def renew(body: LoanReference, db=Depends(get_db), actor=Depends(get_actor)):
    return circulation.renew(
        db, loan_id=body.loan_id, item_id=body.item_id, barcode=body.barcode, actor=actor)

@router.post('/circulation/return', response_model=schemas.ReturnReceipt)
def return_item(body: LoanReference, db=Depends(get_db), actor=Depends(get_actor)):
    result = circulation.return_item(
        db, loan_id=body.loan_id, item_id=body.item_id, barcode=body.barcode, actor=actor)
    return schemas.ReturnReceipt.model_validate(result)

@router.post('/holds', response_model=schemas.Hold, status_code=status.HTTP_201_CREATED)
def place_hold(body: HoldRequest, db=Depends(get_db), actor=Depends(get_actor)):
    return holds.place(db, body.patron_id, body.title_id, item_id=body.item_id, actor=actor)

@router.patch('/holds/{hold_id}/cancel', response_model=schemas.Hold)
def cancel_hold(hold_id: int, db=Depends(get_db), actor=Depends(get_actor)):
    return holds.cancel(db, hold_id, actor=actor)

@router.get('/titles/{title_id}/holds', response_model=List[schemas.Hold])
def title_queue(title_id: int, db=Depends(get_db), actor=Depends(get_actor)):
    return CircdeskAPI.get_queue(db, title_id)

@router.get('/patrons/{patron_id}/loans', response_model=List[schemas.Loan])
def patron_loans(patron_id: int, db=Depends(get_db), actor=Depends(get_actor)):
    return CircdeskAPI.get_loans(db, patron_id, actor=actor)

@router.get('/patrons/{patron_id}/history', response_model=List[schemas.Loan])
def patron_history(patron_id: int, offset: Optional[int] = None, limit: Optional[int] = None,
                   db=Depends(get_db), actor=Depends(get_actor)):
    return CircdeskAPI.get_history(db, patron_id, actor=actor, offset=offset, limit=limit)

@router.get('/patrons/{patron_id}/holds', response_model=List[schemas.Hold])
def patron_holds(patron_id: int, offset: Optional[int] = None, limit: Optional[int] = None,
                 db=Depends(get_db), actor=Depends(get_actor)):
    return CircdeskAPI.get_holds(db, patron_id, actor=actor, offset=offset, limit=limit)

@router.get('/patrons/{patron_id}/account', response_model=schemas.Account)
def patron_account(patron_id: int, db=Depends(get_db), actor=Depends(get_actor)):
    return CircdeskAPI.get_account(db, patron_id, actor=actor)

@router.get('/patrons/{patron_id}/notifications', response_model=List[schemas.Notification])
def patron_notifications(patron_id: int, db=Depends(get_db), actor=Depends(get_actor)):
    return CircdeskAPI.get_notifications(db, patron_id, actor=actor)

@router.post('/accounts/{entry_id}/pay', response_model=schemas.LedgerEntry)
def pay(entry_id: int, body: PaymentRequest, db=Depends(get_db), actor=Depends(get_actor)):
    return ledger.pay(db, entry_id, body.amount, actor=actor, payment_type=body.payment_type)

@router.patch('/items/{item_id}/status', response_model=schemas.ItemStatusChange)
def item_status(item_id: int, body: ItemStatusRequest, db=Depends(get_db), actor=Depends(get_actor)):
    change = circulation.set_item_status(db, body.status, item_id=item_id, actor=actor)
    return schemas.ItemStatusChange.model_validate(change)

@router.post('/maintenance/expire-holds', response_model=List[schemas.Hold])
def expire_holds(db=Depends(get_db), actor=Depends(get_actor)):
    return holds.expire_waiting(db, actor=actor)

@router.post('/maintenance/overdue-notices', response_model=List[schemas.Loan])
def overdue_notices(db=Depends(get_db), actor=Depends(get_actor)):
    return circulation.notify_overdue(db, actor=actor)
