from datetime import datetime

from flask import Blueprint, request, jsonify, g

from models import db
from models.booking import Booking, ACTIVE_STATUSES
from models.payment import PaymentTransaction
from services.errors import SlotConflictError
from services.lifecycle import BookingLifecycle
from services.reservation import actor_relation
from utils.audit import log_event
from utils.auth_context import login_required

booking_bp = Blueprint("booking", __name__)


def _parse_iso(dt_str: str):
    # Facility wall-clock time, e.g. "2026-01-20T18:00:00"
    value = datetime.fromisoformat(dt_str)
    if value.tzinfo is not None:
        raise ValueError("offset not allowed")
    return value


# ---------- PLAYERS: book a range (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/bookings")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    court_id = data.get("court_id")
    start_time = data.get("start_time")
    end_time = data.get("end_time")

    if not court_id or not start_time or not end_time:
        return jsonify(error="court_id, start_time, end_time are required"), 400

    try:
        court_id = int(court_id)
        st = _parse_iso(start_time)
        et = _parse_iso(end_time)
    except (TypeError, ValueError):
        return jsonify(error="Invalid input. Use ISO local times e.g. 2026-01-20T18:00:00"), 400

    try:
        booking = BookingLifecycle().create_booking(court_id, g.user.id, st, et)
    except SlotConflictError as e:
        log_event(
            "BOOKING_CONFLICT",
            user_id=g.user.id,
            entity="court",
            entity_id=court_id,
            metadata={"start_time": st, "end_time": et, "conflict": e.extra.get("conflict")},
        )
        raise

    log_event(
        "BOOKING_CREATE",
        user_id=g.user.id,
        entity="booking",
        entity_id=booking.id,
        metadata={"court_id": court_id, "start_time": st, "end_time": et},
    )
    return jsonify(booking.to_dict()), 201


# ---------- cancel (booker, facility owner, admin) ----------
@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None

    booking = BookingLifecycle().cancel_booking(booking_id, g.user.id, reason=reason)

    log_event("BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"reason": booking.cancel_reason})
    return jsonify(booking.to_dict()), 200


# ---------- PLAYERS: view my bookings ----------
@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    # optional: status filter, or active=1 for pending+confirmed
    status = request.args.get("status")
    q = Booking.query.filter_by(user_id=g.user.id)
    if status:
        q = q.filter_by(status=status)
    elif request.args.get("active") in ("1", "true"):
        q = q.filter(Booking.status.in_(ACTIVE_STATUSES))

    rows = q.order_by(Booking.start_time.desc()).all()
    return jsonify([b.to_dict() for b in rows]), 200


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    booking = db.session.get(Booking, booking_id)
    if not booking or actor_relation(g.user, booking) is None:
        return jsonify(error="Booking not found"), 404

    payments = (
        PaymentTransaction.query
        .filter_by(booking_id=booking.id)
        .order_by(PaymentTransaction.created_at.asc())
        .all()
    )
    body = booking.to_dict()
    body["payments"] = [p.to_dict() for p in payments]
    return jsonify(body), 200
