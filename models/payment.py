from datetime import datetime
from models.db import db

class PaymentTransaction(db.Model):
    __tablename__ = "payment_transactions"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)   # smallest unit
    currency = db.Column(db.String(10), nullable=False, default="NPR")
    payment_method = db.Column(db.String(50), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="pending")  # pending, success, failed, refunded
    gateway_name = db.Column(db.String(50), nullable=True)
    gateway_reference = db.Column(db.String(255), nullable=True, index=True)
    failure_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'success', 'failed', 'refunded')", name="ck_payment_status"
        ),
        # at most one successful payment per booking
        db.Index(
            "uq_payment_success_per_booking",
            "booking_id",
            unique=True,
            sqlite_where=db.text("status = 'success'"),
            postgresql_where=db.text("status = 'success'"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "amount": self.amount,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "status": self.status,
            "gateway_name": self.gateway_name,
            "gateway_reference": self.gateway_reference,
        }
