"""
Shared test fixtures.

Provides: a storage fixture parametrized over both backends, user and session
factories, and an API client per backend.
"""

import itertools

import pytest
from fastapi.testclient import TestClient

from skillshare.config import Settings
from skillshare.database import create_db_engine
from skillshare.main import create_app
from skillshare.schemas import BookingCreate, SessionCreate, UserCreate
from skillshare.storage import MemoryStorage, SqlStorage


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    """
    Storage backend under test.

    Every test using this fixture runs once against MemoryStorage and once
    against SqlStorage on a private in-memory SQLite database.
    """
    if request.param == "memory":
        yield MemoryStorage()
        return

    engine = create_db_engine("sqlite://")
    sql_storage = SqlStorage(engine)
    sql_storage.initialize()
    yield sql_storage
    sql_storage.close()


@pytest.fixture
def make_user(storage):
    """Factory creating users with unique usernames."""
    counter = itertools.count(1)

    def _make(role: str = "learner", **overrides):
        n = next(counter)
        data = {
            "username": f"user{n}",
            "password": "secret-password",
            "first_name": "Test",
            "last_name": f"User{n}",
            "email": f"user{n}@skillshare.dev",
            "role": role,
        }
        data.update(overrides)
        return storage.create_user(UserCreate(**data))

    return _make


@pytest.fixture
def teacher(make_user):
    return make_user(
        role="teacher",
        username="ada",
        first_name="Ada",
        last_name="Lovelace",
        specialization="Python Developer",
    )


@pytest.fixture
def learner(make_user):
    return make_user(role="learner", username="linus")


@pytest.fixture
def make_session(storage, teacher):
    """Factory creating sessions owned by the default teacher."""

    def _make(**overrides):
        data = {
            "title": "Intro to Testing",
            "skill_category": "Programming",
            "description": "Write your first useful test suite.",
            "date": "2025-01-01T10:00:00Z",
            "duration": 1,
            "capacity": 5,
            "teacher_id": teacher.id,
        }
        data.update(overrides)
        return storage.create_session(SessionCreate(**data))

    return _make


@pytest.fixture
def book(storage):
    """Shortcut for storage.create_booking."""

    def _book(session_id: int, learner_id: int, status: str = "confirmed"):
        return storage.create_booking(
            BookingCreate(session_id=session_id, learner_id=learner_id, status=status)
        )

    return _book


@pytest.fixture(params=["memory", "database"])
def client(request):
    """API client against an app built for each storage backend."""
    settings = Settings(
        _env_file=None,
        environment="test",
        storage_backend=request.param,
        database_url="sqlite://",
        log_level="WARNING",
    )
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
