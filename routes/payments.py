import stripe
from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.booking import Booking, PENDING
from services.lifecycle import BookingLifecycle
from services.reservation import actor_relation
from utils.auth_context import login_required
from utils.audit import log_event

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")

MANUAL_METHODS = ("cash", "bank_transfer", "card_terminal", "wallet")


@payments_bp.post("/start")
@login_required
def start_payment():
    """Open a Stripe Checkout session for one of the caller's pending bookings."""
    stripe.api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe.api_key:
        return jsonify(error="Stripe secret key missing (STRIPE_SECRET_KEY)"), 500
    success_url = current_app.config.get("STRIPE_SUCCESS_URL")
    cancel_url = current_app.config.get("STRIPE_CANCEL_URL")
    if not success_url or not cancel_url:
        return jsonify(error="Stripe success/cancel URLs not configured"), 500

    data = request.get_json(silent=True) or {}
    booking_id = data.get("booking_id")
    if not booking_id:
        return jsonify(error="booking_id required"), 400

    try:
        booking = db.session.get(Booking, int(booking_id))
    except (TypeError, ValueError):
        return jsonify(error="booking_id must be an integer"), 400
    if not booking or booking.user_id != g.user.id:
        return jsonify(error="Booking not found"), 404
    if booking.status != PENDING:
        return jsonify(error=f"Booking is {booking.status}, not awaiting payment"), 409

    currency = current_app.config.get("CURRENCY", "NPR")
    session = stripe.checkout.Session.create(
        mode="payment",
        line_items=[{
            "price_data": {
                "currency": currency.lower(),
                "product_data": {"name": f"Court booking #{booking.id}"},
                # final_price is already in the smallest unit
                "unit_amount": booking.final_price,
            },
            "quantity": 1,
        }],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={
            "booking_id": str(booking.id),
            "user_id": str(g.user.id),
        },
    )

    log_event("PAYMENT_SESSION_CREATED", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"stripe_session_id": session["id"]})
    return jsonify(checkout_url=session["url"], session_id=session["id"]), 200


@payments_bp.post("/manual")
@login_required
def record_manual_payment():
    """Facility owner or admin records a payment taken outside the gateway."""
    data = request.get_json(silent=True) or {}
    booking_id = data.get("booking_id")
    amount = data.get("amount")
    method = (data.get("method") or "cash").strip().lower()
    reference = (data.get("reference") or "").strip() or None

    if not booking_id or amount is None:
        return jsonify(error="booking_id and amount are required"), 400
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        return jsonify(error="amount must be a non-negative integer in the smallest currency unit"), 400
    if method not in MANUAL_METHODS:
        return jsonify(error=f"method must be one of {', '.join(MANUAL_METHODS)}"), 400

    try:
        booking = db.session.get(Booking, int(booking_id))
    except (TypeError, ValueError):
        return jsonify(error="booking_id must be an integer"), 400
    if not booking:
        return jsonify(error="Booking not found"), 404
    if actor_relation(g.user, booking) not in ("owner", "admin"):
        return jsonify(error="Forbidden"), 403

    booking = BookingLifecycle().confirm_payment(
        booking.id,
        amount,
        method,
        gateway_name="manual",
        gateway_reference=reference,
        currency=current_app.config.get("CURRENCY", "NPR"),
    )

    log_event("PAYMENT_MANUAL", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"amount": amount, "method": method})
    return jsonify(booking.to_dict()), 200
