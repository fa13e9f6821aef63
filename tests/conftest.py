"""
Pytest configuration and fixtures for the QuestMaster test suite.

Every test runs against a fresh in-memory SQLite database with the
achievement and avatar catalogs seeded. DATABASE_URL is pointed at it
before any application module is imported, because database.py builds
its engine at import time.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient

import actions
from catalog import seed_catalogs
from database import Base, SessionLocal, engine
from main import app
from realtime import ChangeFeed


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture
def setup_database():
    """Clean schema plus seeded catalogs for one test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        seed_catalogs(session)
    finally:
        session.close()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(setup_database):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    """A brand new profile: level 1, 0 XP, starter avatar equipped."""
    return actions.create_profile(db, "hero@example.com", "not-a-real-hash", username="hero")


@pytest.fixture
def other_user(db):
    return actions.create_profile(db, "rival@example.com", "not-a-real-hash", username="rival")


class RecordingFeed(ChangeFeed):
    """ChangeFeed that also remembers what was published."""

    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, event):
        self.events.append(event)
        return super().publish(event)


@pytest.fixture
def feed():
    return RecordingFeed()


# ============================================================================
# API
# ============================================================================


@pytest.fixture
def client(setup_database):
    app.state.feed = ChangeFeed()
    return TestClient(app)


@pytest.fixture
def register(client):
    """Registers an account and returns its Authorization headers."""

    def _register(email="hero@example.com", password="secret123", **extra):
        response = client.post("/auth/register", json={"email": email, "password": password, **extra})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _register


@pytest.fixture
def auth_headers(register):
    return register()
