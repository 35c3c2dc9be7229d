"""
Tests for password hashing and login session helpers.
"""

from datetime import timedelta

from skillshare import auth
from skillshare.config import Settings
from skillshare.storage.base import utcnow


class TestPasswordHashing:
    def test_hash_and_verify(self):
        # Act
        hashed = auth.hash_password("correct horse")

        # Assert
        assert hashed.startswith("$argon2id$")
        assert hashed != "correct horse"
        assert auth.verify_password("correct horse", hashed)
        assert not auth.verify_password("wrong horse", hashed)

    def test_hashes_are_salted(self):
        assert auth.hash_password("same") != auth.hash_password("same")

    def test_malformed_hash_is_rejected(self):
        assert auth.verify_password("anything", "not-a-hash") is False


class TestLoginSessions:
    """Login session lifecycle through the auth helpers, on both backends."""

    def test_session_ids_are_random_hex(self):
        first = auth.generate_session_id()
        second = auth.generate_session_id()

        assert len(first) == 64
        int(first, 16)
        assert first != second

    def test_create_and_resolve_session(self, storage, learner):
        # Arrange
        settings = Settings(_env_file=None, session_expire_hours=1)

        # Act
        token = auth.create_session(storage, learner.id, settings)
        user = auth.get_user_from_session(storage, token)

        # Assert
        assert user is not None
        assert user.id == learner.id

    def test_unknown_token(self, storage):
        assert auth.get_user_from_session(storage, "does-not-exist") is None

    def test_logout_invalidates_session(self, storage, learner):
        # Arrange
        token = auth.create_session(storage, learner.id, Settings(_env_file=None))

        # Act
        deleted = auth.delete_session(storage, token)

        # Assert
        assert deleted is True
        assert auth.get_user_from_session(storage, token) is None
        assert auth.delete_session(storage, token) is False

    def test_expired_session_is_rejected(self, storage, learner):
        # Arrange
        storage.save_auth_session("stale", learner.id, utcnow() - timedelta(minutes=5))

        # Act & Assert
        assert auth.get_user_from_session(storage, "stale") is None

    def test_cleanup_expired_sessions(self, storage, learner):
        # Arrange
        storage.save_auth_session("stale", learner.id, utcnow() - timedelta(hours=1))
        live = auth.create_session(storage, learner.id, Settings(_env_file=None))

        # Act
        removed = auth.cleanup_expired_sessions(storage)

        # Assert
        assert removed == 1
        assert auth.get_user_from_session(storage, live).id == learner.id
