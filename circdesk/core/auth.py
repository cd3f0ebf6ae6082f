import logging
from dataclasses import dataclass
from typing import Optional
from itsdangerous import URLSafeTimedSerializer, BadSignature
from circdesk.configs import SEED, TOKEN_TTL
from circdesk.core.exceptions import ActorNotPermittedError

logger = logging.getLogger(__name__)

STAFF = "staff"
PATRON = "patron"
ROLES = (STAFF, PATRON)

SERIALIZER = None  # Will be initialized lazily


@dataclass(frozen=True)
class Actor:
    """The already authenticated caller on whose behalf an operation runs."""
    id: int
    role: str = PATRON

    @property
    def is_staff(self):
        return self.role == STAFF


def _get_serializer():
    """Get or initialize the SERIALIZER lazily."""
    global SERIALIZER
    if SERIALIZER is None:
        SERIALIZER = URLSafeTimedSerializer(SEED, salt="circdesk-actor")
    return SERIALIZER

def create_token(actor: Actor) -> str:
    """Returns a signed bearer token for `actor`."""
    return _get_serializer().dumps({"id": actor.id, "role": actor.role})

def verify_token(token: Optional[str]) -> Optional[Actor]:
    """Retrieves the actor from a signed token, None if it is missing,
    tampered with, expired or malformed."""
    if not token:
        return None
    try:
        data = _get_serializer().loads(token, max_age=TOKEN_TTL)
    except BadSignature:
        return None
    if not isinstance(data, dict) or data.get("role") not in ROLES:
        return None
    try:
        return Actor(id=int(data["id"]), role=data["role"])
    except (KeyError, TypeError, ValueError):
        return None

def authorize(actor: Optional[Actor], patron_id: int, action: str = "act"):
    """Patrons may only act on their own account; staff and trusted
    system callers (actor=None) may act for anyone."""
    if actor is None or actor.is_staff:
        return
    if actor.id != patron_id:
        raise ActorNotPermittedError(f"Patrons can only {action} for themselves")

def require_staff(actor: Optional[Actor], action: str = "do this"):
    if actor is not None and not actor.is_staff:
        raise ActorNotPermittedError(f"Only staff can {action}")
