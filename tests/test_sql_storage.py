"""
Tests specific to SqlStorage: concurrent booking on a file-backed SQLite
database and bookings whose rows vanished underneath them.
"""

from concurrent.futures import ThreadPoolExecutor
import time

import pytest

from skillshare.database import create_db_engine
from skillshare.errors import CapacityExceeded, IntegrityViolation
from skillshare.schemas import BookingCreate, SessionCreate, UserCreate
from skillshare.storage import SqlStorage


@pytest.fixture
def file_storage(tmp_path):
    """SqlStorage on a SQLite file, so every thread gets its own connection."""
    storage = SqlStorage(create_db_engine(f"sqlite:///{tmp_path / 'skillshare.db'}"))
    storage.initialize()
    yield storage
    storage.close()


@pytest.fixture
def memory_db_storage():
    storage = SqlStorage(create_db_engine("sqlite://"))
    storage.initialize()
    yield storage
    storage.close()


def _user(storage, username, role="learner"):
    return storage.create_user(
        UserCreate(
            username=username,
            password="secret-password",
            first_name="Test",
            last_name=username.title(),
            email=f"{username}@skillshare.dev",
            role=role,
        )
    )


def _session(storage, teacher_id, capacity):
    return storage.create_session(
        SessionCreate(
            title="Concurrency workshop",
            skill_category="Programming",
            description="Many learners racing for a few seats.",
            date="2025-01-01T10:00:00Z",
            duration=1.5,
            capacity=capacity,
            teacher_id=teacher_id,
        )
    )


def _race(storage, session_id, learner_ids, workers):
    def attempt(learner_id):
        try:
            storage.create_booking(BookingCreate(session_id=session_id, learner_id=learner_id))
            return True
        except CapacityExceeded:
            return False

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(attempt, learner_ids))


class TestConcurrentBooking:
    """Parallel booking attempts never exceed capacity on SQLite."""

    def test_parallel_bookings_respect_capacity(self, file_storage):
        # Arrange
        teacher = _user(file_storage, "teacher", role="teacher")
        session = _session(file_storage, teacher.id, capacity=5)
        learners = [_user(file_storage, f"learner{i}") for i in range(20)]

        # Act
        results = _race(file_storage, session.id, [learner.id for learner in learners], workers=8)

        # Assert
        assert results.count(True) == 5
        assert file_storage.get_session_by_id(session.id).enrolled_count == 5
        assert file_storage.get_session_enrollment_count(session.id) == 5

    def test_last_seat_goes_to_one_learner(self, file_storage, monkeypatch):
        # Arrange
        teacher = _user(file_storage, "teacher", role="teacher")
        session = _session(file_storage, teacher.id, capacity=1)
        first = _user(file_storage, "learner1")
        second = _user(file_storage, "learner2")

        count_confirmed = SqlStorage._count_confirmed

        def slow_count(db, session_id):
            # Leave room for the other thread to read the same count
            count = count_confirmed(db, session_id)
            time.sleep(0.2)
            return count

        monkeypatch.setattr(SqlStorage, "_count_confirmed", staticmethod(slow_count))

        # Act
        results = _race(file_storage, session.id, [first.id, second.id], workers=2)

        # Assert
        assert sorted(results) == [False, True]
        assert file_storage.get_session_by_id(session.id).enrolled_count == 1


class TestIntegrity:
    """Bookings whose learner row is gone raise instead of being dropped."""

    @pytest.fixture
    def dangling_booking(self, memory_db_storage):
        storage = memory_db_storage
        teacher = _user(storage, "teacher", role="teacher")
        learner = _user(storage, "learner")
        session = _session(storage, teacher.id, capacity=2)
        booking = storage.create_booking(BookingCreate(session_id=session.id, learner_id=learner.id))

        # Bypass the foreign key so the booking outlives its learner
        raw = storage._engine.raw_connection()
        try:
            cursor = raw.cursor()
            cursor.execute("PRAGMA foreign_keys=OFF")
            cursor.execute("DELETE FROM users WHERE id = ?", (learner.id,))
            cursor.close()
        finally:
            raw.close()
        return booking

    def test_get_booking_by_id(self, memory_db_storage, dangling_booking):
        with pytest.raises(IntegrityViolation) as exc_info:
            memory_db_storage.get_booking_by_id(dangling_booking.id)
        assert exc_info.value.status_code == 500
        assert exc_info.value.entity_id == dangling_booking.id

    def test_bookings_by_user_and_session(self, memory_db_storage, dangling_booking):
        with pytest.raises(IntegrityViolation):
            memory_db_storage.get_bookings_by_user_id(dangling_booking.learner_id)
        with pytest.raises(IntegrityViolation):
            memory_db_storage.get_bookings_by_session_id(dangling_booking.session_id)

    def test_booking_by_session_and_learner(self, memory_db_storage, dangling_booking):
        with pytest.raises(IntegrityViolation):
            memory_db_storage.get_booking_by_session_and_learner(
                dangling_booking.session_id, dangling_booking.learner_id
            )
