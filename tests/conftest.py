"""
Shared fixtures: an app built by the real factory against in-memory SQLite,
a controllable clock, a static IP -> location table and a notifier that
records what would have been sent.
"""
from datetime import datetime, timedelta

import pytest

from app import create_app
from models import db as _db
from models.user import User
from security.outcomes import LoginRequest
from security.password import hash_password
from utils.geo import GeoLocation, GeoLookup

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "SECRET_KEY": "test-secret",
    "BCRYPT_ROUNDS": 4,
    "LOG_LEVEL": "WARNING",
    "GEO_LOOKUP_URL": "",
}

PASSWORD = "Correct-Horse-42"
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0 Safari/537.36"
)
PHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Mobile/15E148 Safari/604.1"
)

LONDON_IP = "81.2.69.160"
PARIS_IP = "90.84.0.10"
NEW_YORK_IP = "23.45.67.89"
SINGAPORE_IP = "203.0.113.50"


class FakeClock:
    # Monday 2 March 2026, 10:00 UTC
    def __init__(self, start=datetime(2026, 3, 2, 10, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class StaticGeoLookup(GeoLookup):
    def __init__(self):
        self.table = {
            LONDON_IP: GeoLocation("United Kingdom", "England", "London", 51.5074, -0.1278),
            PARIS_IP: GeoLocation("France", "Ile-de-France", "Paris", 48.8566, 2.3522),
            NEW_YORK_IP: GeoLocation("United States", "New York", "New York", 40.7128, -74.0060),
            SINGAPORE_IP: GeoLocation("Singapore", "Central", "Singapore", 1.3521, 103.8198),
        }

    def lookup(self, ip_address):
        return self.table.get(ip_address)


class RecordingNotifier:
    def __init__(self):
        self.otps = []
        self.alerts = []

    def send_otp(self, method, email, phone_number, code, expires_at):
        self.otps.append({"method": method, "email": email, "phone": phone_number,
                          "code": code, "expires_at": expires_at})

    def send_security_alert(self, email, title, message, severity="Medium", details=None):
        self.alerts.append({"email": email, "title": title, "severity": severity, "details": details})

    @property
    def last_code(self):
        return self.otps[-1]["code"]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def geo():
    return StaticGeoLookup()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(clock, geo, notifier):
    app = create_app(TEST_CONFIG, geo=geo, notifier=notifier, clock=clock)
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def engine(app):
    return app.extensions["auth_engine"]


@pytest.fixture
def make_user(app):
    def _make(email="alice@example.com", password=PASSWORD, mfa_option="", phone_number=None, is_active=True):
        user = User(
            email=email,
            password_hash=hash_password(password, rounds=4),
            full_name="Alice Example",
            phone_number=phone_number,
            mfa_option=mfa_option,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


def login_request(email="alice@example.com", password=PASSWORD, ip=LONDON_IP, ua=DESKTOP_UA, **kwargs):
    return LoginRequest(email=email, password=password, ip_address=ip, user_agent=ua, **kwargs)
