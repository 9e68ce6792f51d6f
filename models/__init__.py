from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .facility import Facility
from .court import Court
from .availability_rule import AvailabilityRule
from .blocked_range import BlockedTimeRange
from .booking_policy import BookingPolicy
from .booking import Booking
from .payment import PaymentTransaction
