import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as courtslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "courtslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Create tables on startup instead of running migrations (local/test only)
    AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true"

    # Bearer tokens
    JWT_SECRET = os.getenv("JWT_SECRET", "dev-only-jwt-secret")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRY_SECONDS = int(os.getenv("JWT_EXPIRY_SECONDS", str(8 * 60 * 60)))

    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
    MIN_PASSWORD_LENGTH = 8

    # Booking policy defaults (facility/court rows may override)
    MAX_BOOKING_DURATION_HOURS = float(os.getenv("MAX_BOOKING_DURATION_HOURS", "8"))
    MAX_ADVANCE_BOOKING_DAYS = int(os.getenv("MAX_ADVANCE_BOOKING_DAYS", "30"))
    PENDING_BOOKING_EXPIRATION_HOURS = float(os.getenv("PENDING_BOOKING_EXPIRATION_HOURS", "24"))
    CANCEL_CUTOFF_HOURS = float(os.getenv("CANCEL_CUTOFF_HOURS", "12"))

    # Max wait for a court's booking lock before answering 503
    BOOKING_LOCK_TIMEOUT_SECONDS = float(os.getenv("BOOKING_LOCK_TIMEOUT_SECONDS", "5"))

    # Payments
    CURRENCY = os.getenv("CURRENCY", "NPR")
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_SUCCESS_URL = os.getenv("STRIPE_SUCCESS_URL")
    STRIPE_CANCEL_URL = os.getenv("STRIPE_CANCEL_URL")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False
