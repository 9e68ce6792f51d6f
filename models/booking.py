from datetime import datetime
from models.db import db

PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
COMPLETED = "completed"

# statuses that hold a court interval
ACTIVE_STATUSES = (PENDING, CONFIRMED)
TERMINAL_STATUSES = (CANCELLED, COMPLETED)

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    court_id = db.Column(db.Integer, db.ForeignKey("courts.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # facility wall-clock time, half-open [start_time, end_time)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(20), nullable=False, default="pending")
    # status values: pending, confirmed, cancelled, completed

    final_price = db.Column(db.Integer, nullable=False, default=0)  # smallest unit
    payment_reference = db.Column(db.String(255), nullable=True)

    expires_at = db.Column(db.DateTime, nullable=True)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(120), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    court = db.relationship("Court")

    __table_args__ = (
        db.CheckConstraint("end_time > start_time", name="ck_booking_time_range"),
        db.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')", name="ck_booking_status"
        ),
        # overlap lookups: court_id = ? AND start_time < ? AND end_time > ?
        db.Index("ix_bookings_court_overlap", "court_id", "start_time", "end_time", "status"),
        db.Index("ix_bookings_status_expires", "status", "expires_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "court_id": self.court_id,
            "user_id": self.user_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status,
            "final_price": self.final_price,
            "payment_reference": self.payment_reference,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
