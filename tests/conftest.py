from datetime import date, datetime, time, timedelta

import pytest

from app import create_app
from config import Config
from models import db
from models.availability_rule import AvailabilityRule
from models.court import Court
from models.facility import Facility
from models.user import User
from security.password import hash_password
from security.tokens import issue_token
from utils.seed import get_role

MONDAY = 1
PASSWORD = "correct-horse-42"


class TestConfig(Config):
    TESTING = True
    AUTO_CREATE_TABLES = True
    BCRYPT_ROUNDS = 4
    JWT_SECRET = "test-jwt-secret"
    LOG_LEVEL = "WARNING"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_dummy"
    STRIPE_SUCCESS_URL = "https://example.test/paid"
    STRIPE_CANCEL_URL = "https://example.test/cancelled"
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 15}}


@pytest.fixture
def app(tmp_path):
    class _Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "courtslot-test.db")

    app = create_app(_Config)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(email, *roles):
    user = User(email=email, password_hash=hash_password(PASSWORD), full_name=email.split("@")[0])
    for name in roles:
        user.roles.append(get_role(name))
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def player(app):
    return make_user("player@example.test", "PLAYER")


@pytest.fixture
def other_player(app):
    return make_user("rival@example.test", "PLAYER")


@pytest.fixture
def owner(app):
    return make_user("owner@example.test", "OWNER")


@pytest.fixture
def admin(app):
    return make_user("admin@example.test", "ADMIN")


@pytest.fixture
def facility(owner):
    f = Facility(owner_user_id=owner.id, name="Riverside Sports", location="Kathmandu")
    db.session.add(f)
    db.session.commit()
    return f


@pytest.fixture
def court(facility):
    c = Court(facility_id=facility.id, name="Court 1", sport="futsal", price_per_hour=1000)
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def monday():
    """First Monday at least two days from today."""
    day = date.today() + timedelta(days=2)
    while day.weekday() != 0:
        day += timedelta(days=1)
    return day


@pytest.fixture
def rules(court):
    rule = AvailabilityRule(court_id=court.id, day_of_week=MONDAY, start_minute=9 * 60, end_minute=18 * 60)
    db.session.add(rule)
    db.session.commit()
    return [rule]


@pytest.fixture
def now(monday):
    # Saturday morning before the Monday under test
    return datetime.combine(monday - timedelta(days=2), time(8, 0))


@pytest.fixture
def at(monday):
    def _at(hour, minute=0):
        return datetime.combine(monday, time(hour, minute))
    return _at


@pytest.fixture
def auth_header():
    def _header(user):
        return {"Authorization": f"Bearer {issue_token(user)}"}
    return _header


@pytest.fixture
def user_factory(app):
    return make_user
