from datetime import datetime
from models.db import db

BLOCK_ONE_TIME = "one_time"      # start_date + minute range
BLOCK_RECURRING = "recurring"    # day_of_week + minute range
BLOCK_DATE_RANGE = "date_range"  # start_date..end_date, whole days
BLOCK_TYPES = (BLOCK_ONE_TIME, BLOCK_RECURRING, BLOCK_DATE_RANGE)

class BlockedTimeRange(db.Model):
    __tablename__ = "blocked_time_ranges"

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id", ondelete="CASCADE"), nullable=False, index=True)
    # NULL court_id blocks every court of the facility
    court_id = db.Column(db.Integer, db.ForeignKey("courts.id", ondelete="CASCADE"), nullable=True, index=True)

    block_type = db.Column(db.String(20), nullable=False)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    day_of_week = db.Column(db.Integer, nullable=True)
    start_minute = db.Column(db.Integer, nullable=True)
    end_minute = db.Column(db.Integer, nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint(
            "block_type IN ('one_time', 'recurring', 'date_range')", name="ck_block_type"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "facility_id": self.facility_id,
            "court_id": self.court_id,
            "block_type": self.block_type,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "day_of_week": self.day_of_week,
            "start_minute": self.start_minute,
            "end_minute": self.end_minute,
            "reason": self.reason,
            "is_active": self.is_active,
        }
