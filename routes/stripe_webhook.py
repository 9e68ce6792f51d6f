import logging

import stripe
from flask import Blueprint, request, jsonify, current_app

from services.errors import NotFoundError, StateError
from services.lifecycle import BookingLifecycle
from utils.audit import log_event

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.data

    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(error="Invalid webhook signature"), 400

    event_type = event.get("type")
    if event_type not in ("checkout.session.completed", "checkout.session.expired"):
        return jsonify(received=True), 200

    session = event["data"]["object"]
    session_id = session.get("id")
    meta = session.get("metadata", {}) or {}
    try:
        booking_id = int(meta.get("booking_id"))
    except (TypeError, ValueError):
        logger.warning("stripe session %s has no booking_id metadata", session_id)
        return jsonify(received=True), 200

    lifecycle = BookingLifecycle()
    currency = (session.get("currency") or current_app.config.get("CURRENCY", "NPR")).upper()
    try:
        if event_type == "checkout.session.completed":
            lifecycle.confirm_payment(
                booking_id,
                session.get("amount_total") or 0,
                "card",
                gateway_name="stripe",
                gateway_reference=session_id,
                currency=currency,
            )
            log_event("PAYMENT_PAID", entity="booking", entity_id=booking_id, metadata={"stripe_session_id": session_id})
        else:
            lifecycle.record_payment_failure(
                booking_id,
                session.get("amount_total") or 0,
                "card",
                gateway_name="stripe",
                gateway_reference=session_id,
                reason="checkout session expired",
                currency=currency,
            )
            log_event("PAYMENT_EXPIRED", entity="booking", entity_id=booking_id, metadata={"stripe_session_id": session_id})
    except (StateError, NotFoundError) as e:
        # redelivery, unknown booking or one that already moved on; acknowledge so Stripe stops retrying
        log_event("PAYMENT_IGNORED", entity="booking", entity_id=booking_id, metadata={"stripe_session_id": session_id, **e.to_dict()})
        return jsonify(received=True, ignored=e.kind), 200

    return jsonify(received=True), 200
