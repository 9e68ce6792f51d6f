"""
Slot reservation manager: the only writer of court booking timelines.

`reserve` validates, takes the per-court lock, re-computes openness from
committed state and inserts a pending booking, or rolls back and raises.
`release` cancels under the same lock so a cancellation and a new attempt
for the freed interval cannot interleave.
"""
import logging
from datetime import datetime, timedelta

from flask import current_app

from models import db
from models.booking import Booking, PENDING, CONFIRMED, CANCELLED
from models.payment import PaymentTransaction
from models.user import ROLE_ADMIN, User
from services.availability import find_conflict, get_active_court, load_day_snapshot, open_intervals
from services.errors import (
    CancellationWindowError,
    ForbiddenError,
    InvalidRangeError,
    NotFoundError,
    SlotConflictError,
)
from services.locks import CourtLockRegistry, court_locks, court_timeline
from services.policy import BookingPolicy, resolve_policy, validate_range
from services.states import apply_transition, ensure_transition

logger = logging.getLogger(__name__)

PENDING_EXPIRED_REASON = "pending_expired"


def quote_price(court, start: datetime, end: datetime) -> int:
    minutes = (end - start).total_seconds() / 60
    return int(round(court.price_per_hour * minutes / 60))


def lapse_pending_holds(court_id: int, now: datetime, limit: int = None):
    """
    Cancel pending bookings on one court whose hold has run out.
    Caller must hold the court lock and commit.
    """
    q = (
        Booking.query
        .filter(
            Booking.court_id == court_id,
            Booking.status == PENDING,
            Booking.expires_at.isnot(None),
            Booking.expires_at <= now,
        )
        .order_by(Booking.expires_at.asc())
    )
    if limit:
        q = q.limit(limit)
    lapsed = q.all()
    for booking in lapsed:
        apply_transition(booking, CANCELLED, now=now, reason=PENDING_EXPIRED_REASON)
    return lapsed


def actor_relation(actor, booking) -> str:
    """'booker', 'owner', 'admin' or None."""
    if actor is None:
        return None
    if actor.has_role(ROLE_ADMIN):
        return "admin"
    if booking.user_id == actor.id:
        return "booker"
    court = booking.court
    if court is not None and court.owner_user_id == actor.id:
        return "owner"
    return None


class SlotReservationManager:
    def __init__(self, policy: BookingPolicy = None, locks: CourtLockRegistry = None):
        self.policy = policy
        self.locks = locks or court_locks

    def base_policy(self) -> BookingPolicy:
        return self.policy or BookingPolicy.from_config(current_app.config)

    def policy_for(self, court, **overrides) -> BookingPolicy:
        return resolve_policy(court, self.base_policy()).with_overrides(**overrides)

    def reserve(
        self,
        court_id: int,
        user_id: int,
        start: datetime,
        end: datetime,
        now: datetime = None,
        max_duration_hours=None,
        max_advance_days=None,
    ) -> Booking:
        now = now or datetime.now()
        court = get_active_court(court_id)
        policy = self.policy_for(court, max_duration_hours=max_duration_hours, max_advance_days=max_advance_days)

        check = validate_range(start, end, policy.max_duration_hours, policy.max_advance_days, now=now)
        if not check.valid:
            raise InvalidRangeError(check.errors)

        with court_timeline(court_id, policy.lock_timeout_seconds, self.locks, require_active=True) as court:
            lapse_pending_holds(court.id, now)

            snapshot = load_day_snapshot(court, start.date(), now=now)
            free = open_intervals(start.date(), snapshot.rules, snapshot.occupied)
            if not any(s <= start and end <= e for s, e in free):
                db.session.rollback()
                conflict = find_conflict(snapshot.occupied, start, end)
                logger.info(
                    "court %s: %s-%s rejected for user %s (conflict=%s)",
                    court_id, start, end, user_id, conflict,
                )
                if conflict is not None:
                    raise SlotConflictError("Time slot is no longer available", conflict.start, conflict.end)
                raise SlotConflictError("Requested time is outside the court's opening hours")

            booking = Booking(
                court_id=court.id,
                user_id=user_id,
                start_time=start,
                end_time=end,
                status=PENDING,
                final_price=quote_price(court, start, end),
                expires_at=now + timedelta(hours=policy.pending_expiration_hours),
            )
            db.session.add(booking)
            db.session.commit()

        logger.info("court %s: booking %s reserved %s-%s for user %s", court_id, booking.id, start, end, user_id)
        return booking

    def release(self, booking_id: int, acting_user_id: int, reason: str = None, now: datetime = None) -> Booking:
        now = now or datetime.now()
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")

        actor = db.session.get(User, acting_user_id)
        relation = actor_relation(actor, booking)
        if relation is None:
            raise ForbiddenError("Only the booker or the facility owner may cancel this booking")

        self._check_cancellable(booking, relation, now)
        court_id = booking.court_id

        with court_timeline(court_id, self.base_policy().lock_timeout_seconds, self.locks):
            # status may have moved while we waited
            booking = db.session.get(Booking, booking_id)
            self._check_cancellable(booking, relation, now)
            was_confirmed = booking.status == CONFIRMED

            apply_transition(booking, CANCELLED, now=now, reason=reason or f"cancelled_by_{relation}")
            if was_confirmed:
                refund_successful_payments(booking.id)
            db.session.commit()

        logger.info("booking %s cancelled by user %s (%s)", booking_id, acting_user_id, relation)
        return booking

    def _check_cancellable(self, booking, relation: str, now: datetime):
        ensure_transition(booking, CANCELLED)
        if booking.status == CONFIRMED and relation == "booker":
            cutoff = self.policy_for(booking.court).cancel_cutoff_hours
            if booking.start_time - now < timedelta(hours=cutoff):
                raise CancellationWindowError(
                    booking.status,
                    CANCELLED,
                    detail=f"Cancellation not allowed within {cutoff:g} hours of start",
                )


def refund_successful_payments(booking_id: int):
    rows = PaymentTransaction.query.filter_by(booking_id=booking_id, status="success").all()
    for row in rows:
        row.status = "refunded"
    return rows
