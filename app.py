import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import ROLE_ADMIN, ROLE_OWNER, User
from routes import auth_bp, booking_bp, courts_bp, health_bp, payments_bp, webhook_bp
from services.errors import BookingError
from services.lifecycle import BookingLifecycle
from utils.audit import log_event
from utils.auth_context import load_current_user
from utils.seed import get_role, seed_roles


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(courts_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    with app.app_context():
        if app.config.get("AUTO_CREATE_TABLES"):
            db.create_all()
        # Seed default roles at startup (safe & idempotent)
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(BookingError)
    def _booking_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def _grant_role(email: str, role_name: str):
    user = User.query.filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo("User not found")
        return

    role = get_role(role_name)
    if role not in user.roles:
        user.roles.append(role)
    db.session.commit()

    log_event(f"ROLE_GRANT_{role_name}", user_id=user.id, entity="user", entity_id=user.id)
    click.echo(f"{user.email} promoted to {role_name}")


def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        _grant_role(email, ROLE_ADMIN)

    @app.cli.command("make-owner")
    @click.argument("email")
    def make_owner(email):
        """Let a user register facilities."""
        _grant_role(email, ROLE_OWNER)

    @app.cli.command("expire-pending")
    @click.option("--batch-size", default=100, show_default=True)
    def expire_pending(batch_size):
        """Cancel pending bookings whose payment hold has lapsed."""
        ids = BookingLifecycle().expire_pending_bookings(batch_size=batch_size)
        if ids:
            log_event("BOOKING_EXPIRE_SWEEP", entity="booking", metadata={"booking_ids": ids})
        click.echo(f"expired {len(ids)} pending booking(s)")

    @app.cli.command("complete-elapsed")
    @click.option("--batch-size", default=100, show_default=True)
    def complete_elapsed(batch_size):
        """Mark confirmed bookings that have ended as completed."""
        ids = BookingLifecycle().complete_elapsed_bookings(batch_size=batch_size)
        if ids:
            log_event("BOOKING_COMPLETE_SWEEP", entity="booking", metadata={"booking_ids": ids})
        click.echo(f"completed {len(ids)} booking(s)")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
