# tests/conftest.py
"""Shared fixtures: in-memory SQLite, a recording mailer and a controllable
clock. Every test function gets a fresh database."""
import os
import sys
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from account_service.app import create_app
from account_service.auth import AuthService
from account_service.config import Settings
from account_service.database import init_db, make_engine, make_session_factory
from account_service.mailer import Mailer
from account_service.otp import OTPService
from account_service.tokens import TokenIssuer
from account_service.users import UserService

ACCESS_SECRET = "testing-access-secret"
REFRESH_SECRET = "testing-refresh-secret"
PASSWORD = "Str0ng!Pass"


class RecordingTransport:
    """Mail transport that keeps messages instead of sending them."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, email):
        if self.fail:
            raise ConnectionError("mail server unreachable")
        self.sent.append(email)
        return True

    def last_to(self, address):
        matching = [email for email in self.sent if email.to == address]
        return matching[-1] if matching else None


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def registration(**overrides):
    data = {
        "email": "Ada@Example.com",
        "password": PASSWORD,
        "full_name": "Ada Lovelace",
        "phone_number": "+234 801 234 5678",
        "preferred_currency": "ngn",
    }
    data.update(overrides)
    return data


@pytest.fixture
def settings():
    return Settings(
        jwt_secret=ACCESS_SECRET,
        refresh_token_secret=REFRESH_SECRET,
        database_url="sqlite://",
        log_level="WARNING",
    )


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def mailer(transport):
    return Mailer(transport, "Account Service", "no-reply@example.com")


@pytest.fixture
def tokens():
    return TokenIssuer(ACCESS_SECRET, REFRESH_SECRET, "15m", "30d")


@pytest.fixture
def users(db):
    return UserService(db)


@pytest.fixture
def otp(db, clock):
    return OTPService(db, clock=clock)


@pytest.fixture
def auth(db, tokens, mailer, otp):
    return AuthService(db, tokens, mailer, otp=otp)


@pytest.fixture
def user(users):
    """A registered, active user (dict projection)."""
    result = users.create_user(registration())
    assert result.success, result
    return result.data


@pytest.fixture
def client(settings, session_factory, mailer, tokens):
    app = create_app(settings, session_factory=session_factory, mailer=mailer, tokens=tokens)
    return TestClient(app)


@pytest.fixture
def bearer(tokens):
    def _bearer(user_data, role="user"):
        from account_service.schemas import TokenClaims

        claims = TokenClaims(user_id=user_data["user_id"], email=user_data["email"], role=role)
        return {"Authorization": f"Bearer {tokens.generate_access_token(claims)}"}

    return _bearer
