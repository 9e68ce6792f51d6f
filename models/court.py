from datetime import datetime
from models.db import db

class Court(db.Model):
    __tablename__ = "courts"

    id = db.Column(db.Integer, primary_key=True)
    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    sport = db.Column(db.String(60), nullable=True)
    price_per_hour = db.Column(db.Integer, nullable=False, default=0)  # smallest unit

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    facility = db.relationship("Facility", back_populates="courts")

    __table_args__ = (
        db.UniqueConstraint("facility_id", "name", name="uq_court_facility_name"),
    )

    @property
    def owner_user_id(self):
        return self.facility.owner_user_id if self.facility else None
