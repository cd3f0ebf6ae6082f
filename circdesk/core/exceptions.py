#!/usr/bin/env python

"""
    Error taxonomy for Circdesk.

    Every failure raised by the engine carries a `kind` (NotFound, Invalid,
    Conflict, Forbidden), a short `reason` code and a human readable message.

    :copyright: (c) 2015 by AUTHORS
    :license: see LICENSE for more details
"""


class CircdeskError(Exception):
    kind = "Error"
    reason = "Unexpected"
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.reason)

    def to_dict(self):
        return {"error": self.kind, "reason": self.reason, "message": str(self)}


class NotFoundError(CircdeskError):
    kind = "NotFound"
    status_code = 404

class InvalidError(CircdeskError):
    kind = "Invalid"
    status_code = 400

class ConflictError(CircdeskError):
    kind = "Conflict"
    status_code = 409

class ForbiddenError(CircdeskError):
    kind = "Forbidden"
    status_code = 403


class PatronNotFoundError(NotFoundError): reason = "PatronNotFound"

class ItemNotFoundError(NotFoundError): reason = "ItemNotFound"

class TitleNotFoundError(NotFoundError): reason = "TitleNotFound"

class LoanNotFoundError(NotFoundError): reason = "LoanNotFound"

class HoldNotFoundError(NotFoundError): reason = "HoldNotFound"

class LedgerEntryNotFoundError(NotFoundError): reason = "LedgerEntryNotFound"


class NotOnLoanError(InvalidError): reason = "NotOnLoan"

class MissingReferenceError(InvalidError): reason = "MissingReference"

class ItemNotOfTitleError(InvalidError): reason = "ItemNotOfTitle"

class HoldNotActiveError(InvalidError): reason = "HoldNotActive"

class InvalidStatusChangeError(InvalidError): reason = "InvalidStatusChange"

class InvalidAmountError(InvalidError): reason = "InvalidAmount"

class NotPayableError(InvalidError): reason = "NotPayable"

class NothingOutstandingError(InvalidError): reason = "NothingOutstanding"


class ItemUnavailableError(ConflictError): reason = "ItemUnavailable"

class AlreadyOnLoanError(ConflictError): reason = "AlreadyOnLoan"

class DuplicateHoldError(ConflictError): reason = "DuplicateHold"

class OverpaymentError(ConflictError): reason = "Overpayment"

class ConcurrentUpdateError(ConflictError): reason = "ConcurrentUpdate"


class PatronRestrictedError(ForbiddenError): reason = "PatronRestricted"

class MembershipExpiredError(ForbiddenError): reason = "MembershipExpired"

class CheckoutLimitReachedError(ForbiddenError): reason = "CheckoutLimitReached"

class OutstandingFinesError(ForbiddenError): reason = "OutstandingFines"

class RenewalLimitReachedError(ForbiddenError): reason = "RenewalLimitReached"

class ItemReservedError(ForbiddenError): reason = "ItemReserved"

class ActorNotPermittedError(ForbiddenError): reason = "ActorNotPermitted"
