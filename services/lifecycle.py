"""
Booking lifecycle controller.

    pending   -> confirmed   payment success (amount == final price)
    pending   -> cancelled   payment failure, hold expiry, user/owner cancel
    confirmed -> cancelled   owner cancel / refund, booker inside policy window
    confirmed -> completed   end time has passed (scheduled sweep)

Every status write takes the court lock via the reservation manager's
lock discipline; nothing here touches Booking.status directly.
"""
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking, PENDING, CONFIRMED, CANCELLED, COMPLETED
from models.payment import PaymentTransaction
from services.errors import NotFoundError, PaymentMismatchError, StateError
from services.locks import court_timeline
from services.reservation import PENDING_EXPIRED_REASON, SlotReservationManager, lapse_pending_holds
from services.states import apply_transition, ensure_transition

logger = logging.getLogger(__name__)

PAYMENT_FAILED_REASON = "payment_failed"


class BookingLifecycle:
    def __init__(self, reservations: SlotReservationManager = None):
        self.reservations = reservations or SlotReservationManager()

    # -- entry points used by the HTTP layer --------------------------------

    def create_booking(self, court_id: int, user_id: int, start: datetime, end: datetime, now: datetime = None) -> Booking:
        return self.reservations.reserve(court_id, user_id, start, end, now=now)

    def cancel_booking(self, booking_id: int, acting_user_id: int, reason: str = None, now: datetime = None) -> Booking:
        return self.reservations.release(booking_id, acting_user_id, reason=reason, now=now)

    # -- payment signals -----------------------------------------------------

    def confirm_payment(
        self,
        booking_id: int,
        amount: int,
        method: str,
        gateway_name: str = None,
        gateway_reference: str = None,
        currency: str = "NPR",
        now: datetime = None,
    ) -> Booking:
        now = now or datetime.now()
        booking = self._get(booking_id)
        ensure_transition(booking, CONFIRMED)

        with self._timeline(booking):
            booking = self._get(booking_id)
            ensure_transition(booking, CONFIRMED)

            txn = PaymentTransaction(
                booking_id=booking.id,
                amount=amount,
                currency=currency,
                payment_method=method,
                gateway_name=gateway_name,
                gateway_reference=gateway_reference,
            )
            if amount != booking.final_price:
                txn.status = "failed"
                txn.failure_reason = f"amount {amount} does not match final price {booking.final_price}"
                db.session.add(txn)
                db.session.commit()
                logger.warning("booking %s: payment %s rejected, %s", booking_id, gateway_reference, txn.failure_reason)
                raise PaymentMismatchError(
                    booking.status,
                    CONFIRMED,
                    detail=f"Payment amount {amount} does not match final price {booking.final_price}",
                )

            txn.status = "success"
            db.session.add(txn)
            apply_transition(booking, CONFIRMED, now=now)
            booking.payment_reference = gateway_reference
            try:
                db.session.commit()
            except IntegrityError:
                # partial unique index: a success row already exists
                db.session.rollback()
                raise StateError(CONFIRMED, CONFIRMED, detail="Booking already has a successful payment")

        logger.info("booking %s confirmed by payment %s", booking_id, gateway_reference)
        return booking

    def record_payment_failure(
        self,
        booking_id: int,
        amount: int,
        method: str,
        gateway_name: str = None,
        gateway_reference: str = None,
        reason: str = None,
        currency: str = "NPR",
        now: datetime = None,
    ) -> Booking:
        now = now or datetime.now()
        booking = self._get(booking_id)
        self._ensure_pending(booking, CANCELLED)

        with self._timeline(booking):
            booking = self._get(booking_id)
            self._ensure_pending(booking, CANCELLED)
            db.session.add(PaymentTransaction(
                booking_id=booking.id,
                amount=amount,
                currency=currency,
                payment_method=method,
                status="failed",
                gateway_name=gateway_name,
                gateway_reference=gateway_reference,
                failure_reason=reason,
            ))
            apply_transition(booking, CANCELLED, now=now, reason=PAYMENT_FAILED_REASON)
            db.session.commit()

        logger.info("booking %s cancelled after failed payment %s", booking_id, gateway_reference)
        return booking

    # -- scheduler sweeps ----------------------------------------------------

    def expire_pending_bookings(self, now: datetime = None, batch_size: int = 100):
        """Cancel pending bookings whose hold has lapsed. Returns their ids."""
        now = now or datetime.now()
        court_ids = [
            row[0] for row in (
                db.session.query(Booking.court_id)
                .filter(Booking.status == PENDING, Booking.expires_at.isnot(None), Booking.expires_at <= now)
                .distinct()
                .all()
            )
        ]

        expired = []
        for court_id in court_ids:
            remaining = batch_size - len(expired)
            if remaining <= 0:
                break
            with court_timeline(court_id, self.reservations.base_policy().lock_timeout_seconds, self.reservations.locks):
                lapsed = lapse_pending_holds(court_id, now, limit=remaining)
                db.session.commit()
            expired.extend(b.id for b in lapsed)

        if expired:
            logger.info("expired %d pending bookings (%s)", len(expired), PENDING_EXPIRED_REASON)
        return expired

    def complete_elapsed_bookings(self, now: datetime = None, batch_size: int = 100):
        """Mark confirmed bookings whose end has passed as completed."""
        now = now or datetime.now()
        court_ids = [
            row[0] for row in (
                db.session.query(Booking.court_id)
                .filter(Booking.status == CONFIRMED, Booking.end_time <= now)
                .distinct()
                .all()
            )
        ]

        completed = []
        for court_id in court_ids:
            remaining = batch_size - len(completed)
            if remaining <= 0:
                break
            with court_timeline(court_id, self.reservations.base_policy().lock_timeout_seconds, self.reservations.locks):
                rows = (
                    Booking.query
                    .filter(Booking.court_id == court_id, Booking.status == CONFIRMED, Booking.end_time <= now)
                    .order_by(Booking.end_time.asc())
                    .limit(remaining)
                    .all()
                )
                for booking in rows:
                    apply_transition(booking, COMPLETED, now=now)
                db.session.commit()
            completed.extend(b.id for b in rows)

        if completed:
            logger.info("completed %d elapsed bookings", len(completed))
        return completed

    # -- helpers -------------------------------------------------------------

    def _get(self, booking_id: int) -> Booking:
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    def _ensure_pending(self, booking: Booking, target: str):
        if booking.status != PENDING:
            raise StateError(booking.status, target)

    def _timeline(self, booking: Booking):
        return court_timeline(
            booking.court_id,
            self.reservations.base_policy().lock_timeout_seconds,
            self.reservations.locks,
        )
