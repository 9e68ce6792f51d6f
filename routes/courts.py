import math
from datetime import date

from flask import Blueprint, request, jsonify, g
from sqlalchemy.exc import IntegrityError

from models import db
from models.availability_rule import AvailabilityRule
from models.blocked_range import BlockedTimeRange, BLOCK_DATE_RANGE, BLOCK_ONE_TIME, BLOCK_RECURRING, BLOCK_TYPES
from models.booking_policy import BookingPolicy as PolicyRow
from models.court import Court
from models.facility import Facility
from models.user import ROLE_ADMIN, ROLE_OWNER
from security.rbac import require_roles
from services.availability import get_availability
from services.policy import GRANULARITY_MINUTES
from utils.audit import log_event
from utils.auth_context import login_required

courts_bp = Blueprint("courts", __name__)

MINUTES_PER_DAY = 24 * 60

# (cast, lowest, highest) for each policy override
POLICY_FIELDS = {
    "max_advance_booking_days": (int, 1, 365),
    "max_booking_duration_hours": (float, 0.5, 24),
    "pending_expiration_hours": (float, 0.5, 720),
    "cancel_cutoff_hours": (float, 0, 720),
}


def _court_payload(c: Court):
    return {
        "id": c.id,
        "facility_id": c.facility_id,
        "facility_name": c.facility.name if c.facility else None,
        "name": c.name,
        "sport": c.sport,
        "price_per_hour": c.price_per_hour,
        "is_active": c.is_active,
    }


def _can_manage(facility: Facility) -> bool:
    user = g.user
    return user.has_role(ROLE_ADMIN) or facility.owner_user_id == user.id


def _managed_court(court_id: int):
    """(court, None) or (None, error response)."""
    court = db.session.get(Court, court_id)
    if not court:
        return None, (jsonify(error="Court not found"), 404)
    if not _can_manage(court.facility):
        return None, (jsonify(error="Forbidden"), 403)
    return court, None


def _minute_field(data, key, required=True):
    """Aligned minute-of-day in [0, 1440], or raise ValueError."""
    value = data.get(key)
    if value is None:
        if required:
            raise ValueError(f"{key} required")
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    if value < 0 or value > MINUTES_PER_DAY:
        raise ValueError(f"{key} must be between 0 and {MINUTES_PER_DAY}")
    if value % GRANULARITY_MINUTES:
        raise ValueError(f"{key} must be a multiple of {GRANULARITY_MINUTES}")
    return value


def _day_field(data, key="day_of_week"):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
        raise ValueError(f"{key} must be 0 (Sunday) to 6 (Saturday)")
    return value


def _date_field(data, key):
    value = data.get(key)
    if not value:
        raise ValueError(f"{key} required")
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be YYYY-MM-DD")


# ---------- OWNERS: facilities and courts ----------
@courts_bp.post("/facilities")
@require_roles(ROLE_OWNER)
def create_facility():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    location = (data.get("location") or "").strip() or None
    description = (data.get("description") or "").strip() or None
    if not name:
        return jsonify(error="Facility name required"), 400

    facility = Facility(owner_user_id=g.user.id, name=name, location=location, description=description)
    db.session.add(facility)
    db.session.commit()

    log_event("FACILITY_CREATE", user_id=g.user.id, entity="facility", entity_id=facility.id)
    return jsonify(id=facility.id, name=facility.name, location=facility.location), 201


@courts_bp.post("/facilities/<int:facility_id>/courts")
@login_required
def create_court(facility_id: int):
    facility = db.session.get(Facility, facility_id)
    if not facility:
        return jsonify(error="Facility not found"), 404
    if not _can_manage(facility):
        return jsonify(error="Forbidden"), 403

    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    sport = (data.get("sport") or "").strip() or None
    price = data.get("price_per_hour", 0)
    if not name:
        return jsonify(error="Court name required"), 400
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        return jsonify(error="price_per_hour must be a non-negative integer"), 400

    court = Court(facility_id=facility.id, name=name, sport=sport, price_per_hour=price)
    db.session.add(court)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Court name already exists in this facility"), 409

    log_event("COURT_CREATE", user_id=g.user.id, entity="court", entity_id=court.id, metadata={"facility_id": facility.id})
    return jsonify(_court_payload(court)), 201


@courts_bp.get("/courts")
def list_courts():
    q = Court.query.filter_by(is_active=True)
    facility_id = request.args.get("facility_id", type=int)
    if facility_id:
        q = q.filter_by(facility_id=facility_id)
    courts = q.order_by(Court.id.asc()).all()
    return jsonify([_court_payload(c) for c in courts]), 200


# ---------- OWNERS: booking policy overrides ----------
@courts_bp.put("/facilities/<int:facility_id>/policy")
@courts_bp.put("/courts/<int:court_id>/policy")
@login_required
def set_policy(facility_id: int = None, court_id: int = None):
    if court_id is not None:
        court, failure = _managed_court(court_id)
        if failure:
            return failure
        facility_id = court.facility_id
    else:
        facility = db.session.get(Facility, facility_id)
        if not facility:
            return jsonify(error="Facility not found"), 404
        if not _can_manage(facility):
            return jsonify(error="Forbidden"), 403

    data = request.get_json(silent=True) or {}
    values = {}
    for key, (cast, lowest, highest) in POLICY_FIELDS.items():
        raw = data.get(key)
        if raw is None:
            values[key] = None
            continue
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            return jsonify(error=f"{key} must be a number"), 400
        if isinstance(raw, float) and not math.isfinite(raw):
            return jsonify(error=f"{key} must be a finite number"), 400
        if cast is int and isinstance(raw, float) and not raw.is_integer():
            return jsonify(error=f"{key} must be a whole number"), 400
        if not lowest <= raw <= highest:
            return jsonify(error=f"{key} must be between {lowest:g} and {highest:g}"), 400
        values[key] = cast(raw)

    row = PolicyRow.query.filter_by(facility_id=facility_id, court_id=court_id).first()
    if row is None:
        row = PolicyRow(facility_id=facility_id, court_id=court_id)
        db.session.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    row.is_active = True
    db.session.commit()

    log_event("POLICY_SET", user_id=g.user.id, entity="booking_policy", entity_id=row.id, metadata=values)
    return jsonify(id=row.id, facility_id=facility_id, court_id=court_id, **values), 200


# ---------- OWNERS: weekly availability rules ----------
@courts_bp.get("/courts/<int:court_id>/availability-rules")
def list_rules(court_id: int):
    court = db.session.get(Court, court_id)
    if not court:
        return jsonify(error="Court not found"), 404
    rules = (
        AvailabilityRule.query
        .filter_by(court_id=court.id, is_active=True)
        .order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_minute.asc())
        .all()
    )
    return jsonify([r.to_dict() for r in rules]), 200


@courts_bp.post("/courts/<int:court_id>/availability-rules")
@login_required
def create_rule(court_id: int):
    court, failure = _managed_court(court_id)
    if failure:
        return failure

    data = request.get_json(silent=True) or {}
    try:
        dow = _day_field(data)
        start_minute = _minute_field(data, "start_minute")
        end_minute = _minute_field(data, "end_minute")
    except ValueError as e:
        return jsonify(error=str(e)), 400
    if end_minute <= start_minute:
        return jsonify(error="end_minute must be after start_minute"), 400

    rule = AvailabilityRule(court_id=court.id, day_of_week=dow, start_minute=start_minute, end_minute=end_minute)
    db.session.add(rule)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Rule already exists for that day and time"), 409

    log_event("RULE_CREATE", user_id=g.user.id, entity="availability_rule", entity_id=rule.id, metadata=rule.to_dict())
    return jsonify(rule.to_dict()), 201


@courts_bp.delete("/courts/<int:court_id>/availability-rules/<int:rule_id>")
@login_required
def delete_rule(court_id: int, rule_id: int):
    court, failure = _managed_court(court_id)
    if failure:
        return failure

    rule = AvailabilityRule.query.filter_by(id=rule_id, court_id=court.id).first()
    if not rule:
        return jsonify(error="Rule not found"), 404

    # soft delete; existing bookings are untouched
    rule.is_active = False
    db.session.commit()

    log_event("RULE_DELETE", user_id=g.user.id, entity="availability_rule", entity_id=rule.id)
    return jsonify(message="Rule removed"), 200


# ---------- OWNERS: administrative blocks ----------
@courts_bp.post("/courts/<int:court_id>/blocks")
@login_required
def create_block(court_id: int):
    court, failure = _managed_court(court_id)
    if failure:
        return failure

    data = request.get_json(silent=True) or {}
    block_type = data.get("block_type") or BLOCK_ONE_TIME
    if block_type not in BLOCK_TYPES:
        return jsonify(error=f"block_type must be one of {', '.join(BLOCK_TYPES)}"), 400

    block = BlockedTimeRange(
        facility_id=court.facility_id,
        court_id=None if data.get("facility_wide") else court.id,
        block_type=block_type,
        reason=(data.get("reason") or "").strip()[:255] or None,
        created_by=g.user.id,
    )
    try:
        if block_type == BLOCK_DATE_RANGE:
            block.start_date = _date_field(data, "start_date")
            block.end_date = _date_field(data, "end_date")
            if block.end_date < block.start_date:
                return jsonify(error="end_date must not be before start_date"), 400
        else:
            if block_type == BLOCK_ONE_TIME:
                block.start_date = _date_field(data, "start_date")
            else:
                block.day_of_week = _day_field(data)
            # no minute range blocks the whole day
            block.start_minute = _minute_field(data, "start_minute", required=False)
            block.end_minute = _minute_field(data, "end_minute", required=False)
            if (block.start_minute is None) != (block.end_minute is None):
                return jsonify(error="start_minute and end_minute go together"), 400
            if block.start_minute is not None and block.end_minute <= block.start_minute:
                return jsonify(error="end_minute must be after start_minute"), 400
    except ValueError as e:
        return jsonify(error=str(e)), 400

    db.session.add(block)
    db.session.commit()

    log_event("BLOCK_CREATE", user_id=g.user.id, entity="blocked_time_range", entity_id=block.id, metadata=block.to_dict())
    return jsonify(block.to_dict()), 201


# ---------- PUBLIC: open time ----------
@courts_bp.get("/courts/<int:court_id>/availability")
def court_availability(court_id: int):
    try:
        date_from = date.fromisoformat(request.args.get("from") or "")
        date_to = date.fromisoformat(request.args.get("to") or request.args.get("from") or "")
    except ValueError:
        return jsonify(error="from/to must be dates in YYYY-MM-DD format"), 400

    block_minutes = request.args.get("block_minutes")
    if block_minutes is not None:
        try:
            block_minutes = int(block_minutes)
        except ValueError:
            return jsonify(error="block_minutes must be an integer"), 400

    blocks = get_availability(court_id, date_from, date_to, block_minutes=block_minutes)
    return jsonify(
        court_id=court_id,
        date_from=date_from.isoformat(),
        date_to=date_to.isoformat(),
        block_minutes=block_minutes,
        blocks=[b.to_dict() for b in blocks],
    ), 200
