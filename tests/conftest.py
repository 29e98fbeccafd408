"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database: tables are created before
each test and dropped after it, so nothing leaks between tests.
"""
import pytest
import sys
import os
from uuid import uuid4
from datetime import date

# Settings are read at import time: configure before importing app modules.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-readiness-checkin-tests-0123456789")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = ""
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import Base, SessionLocal, engine, get_db
from core.security import create_access_token
from models import Athlete, PlannedWorkout
import models  # noqa: F401


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_athlete(db_session):
    def _make(**overrides):
        fields = {
            "email": f"test_{uuid4()}@example.com",
            "display_name": "Test Athlete",
            "plan_rigidity": "LOCKED_1_DAY",
        }
        fields.update(overrides)
        athlete = Athlete(**fields)
        db_session.add(athlete)
        db_session.commit()
        return athlete

    return _make


@pytest.fixture
def test_athlete(make_athlete):
    return make_athlete()


@pytest.fixture
def make_workout(db_session):
    def _make(athlete, scheduled_date=None, **overrides):
        fields = {
            "athlete_id": athlete.id,
            "scheduled_date": scheduled_date or date.today(),
            "title": "Threshold Intervals",
            "workout_type": "threshold",
            "duration_minutes": 60,
            "tss": 85,
            "description_md": "3 x 10 min @ threshold",
            "notes": "Keep cadence high",
        }
        fields.update(overrides)
        workout = PlannedWorkout(**fields)
        db_session.add(workout)
        db_session.commit()
        return workout

    return _make


@pytest.fixture
def client(db_session):
    from fastapi.testclient import TestClient
    from main import app

    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


def auth_headers(athlete) -> dict:
    token = create_access_token({"sub": str(athlete.id)})
    return {"Authorization": f"Bearer {token}"}
