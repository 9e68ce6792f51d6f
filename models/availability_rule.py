from datetime import datetime
from models.db import db

class AvailabilityRule(db.Model):
    __tablename__ = "court_availability_rules"

    id = db.Column(db.Integer, primary_key=True)
    court_id = db.Column(db.Integer, db.ForeignKey("courts.id", ondelete="CASCADE"), nullable=False, index=True)

    # 0=Sunday ... 6=Saturday
    day_of_week = db.Column(db.Integer, nullable=False)
    # minutes since midnight; end may be 1440 (closes at midnight)
    start_minute = db.Column(db.Integer, nullable=False)
    end_minute = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("court_id", "day_of_week", "start_minute", "end_minute", name="uq_rule_court_day_range"),
        db.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_rule_day_of_week"),
        db.CheckConstraint("start_minute >= 0 AND end_minute <= 1440", name="ck_rule_minute_bounds"),
        db.CheckConstraint("end_minute > start_minute", name="ck_rule_range"),
        db.Index("ix_rules_court_day_active", "court_id", "day_of_week", "is_active"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "court_id": self.court_id,
            "day_of_week": self.day_of_week,
            "start_minute": self.start_minute,
            "end_minute": self.end_minute,
            "is_active": self.is_active,
        }
