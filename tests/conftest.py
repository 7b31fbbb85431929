"""Pytest configuration and shared fixtures."""
from unittest.mock import Mock

import pytest

from ai_lms import ai_service, create_app
from ai_lms.state import LmsState
from ai_lms.storage import MemoryStore, PersistentStore


class FakeClock:
    """Stands in for time.time so expiry can be stepped."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms / 1000.0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryStore()


@pytest.fixture
def store(backend, clock):
    return PersistentStore(backend, clock=clock)


@pytest.fixture
def fake_ai():
    """AI service double. Tests set return values per call."""
    return Mock(spec=ai_service)


@pytest.fixture
def state(store, fake_ai):
    return LmsState(store, ai=fake_ai)


def login_as(state, username):
    user = state.find_user_by_name(username)
    state.login(user)
    return user


@pytest.fixture
def app(fake_ai, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "AI_SERVICE": fake_ai,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()
