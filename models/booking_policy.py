from datetime import datetime
from models.db import db

class BookingPolicy(db.Model):
    """
    Per-facility (court_id NULL) or per-court booking limits.
    NULL columns fall through to the next scope, then to app config.
    """
    __tablename__ = "booking_policies"

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False, index=True)
    court_id = db.Column(db.Integer, db.ForeignKey("courts.id", ondelete="CASCADE"), nullable=True, index=True)

    max_advance_booking_days = db.Column(db.Integer, nullable=True)
    max_booking_duration_hours = db.Column(db.Float, nullable=True)
    pending_expiration_hours = db.Column(db.Float, nullable=True)
    cancel_cutoff_hours = db.Column(db.Float, nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("facility_id", "court_id", name="uq_policy_scope"),
    )
