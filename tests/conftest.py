"""
Shared pytest fixtures.

Uses a SQLite file database so no Postgres is required for tests. Every
table is emptied after each test. Outbound collaborators (classifier,
Slack) are replaced with the fakes in tests/helpers.py.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_emopulse.db")
os.environ.setdefault("SLACK_VERIFICATION_TOKEN", "test-verification-token")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import emopulse.models  # noqa: F401
from emopulse.core.config import get_settings
from emopulse.db.base import Base, get_db
from emopulse.deps import get_storage
from emopulse.main import app
from emopulse.services.queue import EventQueue
from emopulse.services.storage import LocalObjectStorage
from tests.helpers import SQLITE_URL, FakeClassifier, FakeClock, FakeNotifier, make_settings

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def settings():
    return make_settings()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def queue(db, clock):
    return EventQueue(db, visibility_timeout=600, max_receives=3, clock=clock)


@pytest.fixture()
def classifier():
    return FakeClassifier()


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def storage(tmp_path):
    return LocalObjectStorage(tmp_path / "bucket", bucket="emotion-data")


@pytest.fixture()
def client(db, settings, storage):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
