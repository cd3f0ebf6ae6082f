import datetime
import logging
from decimal import Decimal, ROUND_HALF_UP

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)

def as_utc(moment=None) -> datetime.datetime:
    """Normalizes a caller supplied `now` to naive UTC, defaulting to utcnow()."""
    if moment is None:
        return utcnow()
    if moment.tzinfo is not None:
        return moment.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return moment

def to_money(value) -> Decimal:
    """Rounds to cents with half-up rounding."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)

def append_note(notes, line: str) -> str:
    return f"{notes}\n{line}" if notes else line
