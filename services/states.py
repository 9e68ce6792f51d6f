from datetime import datetime

from models.booking import PENDING, CONFIRMED, CANCELLED, COMPLETED
from services.errors import StateError

TRANSITIONS = {
    PENDING: (CONFIRMED, CANCELLED),
    CONFIRMED: (CANCELLED, COMPLETED),
    CANCELLED: (),
    COMPLETED: (),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


def ensure_transition(booking, target: str):
    if not can_transition(booking.status, target):
        raise StateError(booking.status, target)


def apply_transition(booking, target: str, now: datetime = None, reason: str = None):
    ensure_transition(booking, target)
    now = now or datetime.now()

    booking.status = target
    if target == CONFIRMED:
        booking.confirmed_at = now
        booking.expires_at = None
    elif target == CANCELLED:
        booking.cancelled_at = now
        booking.cancel_reason = (reason or "")[:120] or None
    elif target == COMPLETED:
        booking.completed_at = now
    return booking
