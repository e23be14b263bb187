import os
import sys

# Must be set before config is imported: the database, celery and the event buffer read them at import time
os.environ["DATABASE_URL"] = "sqlite:///./test_analytics.db"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["ANALYTICS_ENABLED"] = "false"
os.environ["LOG_FILE"] = ""

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest
from fastapi.testclient import TestClient
from data.database import Base, AnalyticsEvent, SessionLocal, engine
from api.depends import get_tracker
from main import app  # import your FastAPI app
from services.tracking import RecordingTracker

# Funnel helpers called through the API record their events here instead of posting them to a collector
recording_tracker = RecordingTracker()

def override_get_tracker():
    return recording_tracker

app.dependency_overrides[get_tracker] = override_get_tracker

@pytest.fixture(autouse=True, scope="session")
def setup_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

@pytest.fixture(autouse=True)
def clean_events():
    yield
    db = SessionLocal()
    try:
        db.query(AnalyticsEvent).delete()
        db.commit()
    finally:
        db.close()
    recording_tracker.clear()

@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def tracker():
    return recording_tracker

@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
