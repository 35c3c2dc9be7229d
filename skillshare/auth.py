from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
import logging
import secrets
from datetime import timedelta
from typing import Optional

from skillshare.config import Settings
from skillshare.schemas import UserRecord
from skillshare.storage.base import IStorage, utcnow

logger = logging.getLogger(__name__)

# Argon2id with library defaults; salt is generated per hash
ph = PasswordHasher()


def hash_password(password: str) -> str:
    """
    Hash password using Argon2id.

    Returns hash string that includes algorithm parameters and salt.
    Format: $argon2id$v=19$m=65536,t=3,p=4$salt$hash
    """
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against stored hash.

    Uses constant-time comparison internally to prevent timing attacks.
    Returns False for any error to avoid information leakage.
    """
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def generate_session_id() -> str:
    """
    Generate cryptographically secure session identifier.

    32 bytes (256 bits) of randomness, hex encoded = 64 character string.
    """
    return secrets.token_hex(32)


def create_session(storage: IStorage, user_id: int, settings: Settings) -> str:
    """
    Create new login session for user.

    Returns session_id to be stored in cookie.
    Session expires after configured duration.
    """
    session_id = generate_session_id()
    expires_at = utcnow() + timedelta(hours=settings.session_expire_hours)
    storage.save_auth_session(session_id, user_id, expires_at)
    return session_id


def get_user_from_session(storage: IStorage, session_id: str) -> Optional[UserRecord]:
    """
    Validate session and retrieve associated user.

    Returns None if:
    - Session doesn't exist
    - Session is expired
    - User doesn't exist
    """
    user_id = storage.get_auth_session_user_id(session_id, utcnow())
    if user_id is None:
        return None
    return storage.get_user(user_id)


def delete_session(storage: IStorage, session_id: str) -> bool:
    """
    Delete session (logout).

    Returns True if session was deleted, False if not found.
    """
    return storage.delete_auth_session(session_id)


def cleanup_expired_sessions(storage: IStorage) -> int:
    """
    Remove expired login sessions.

    Runs on application startup. Returns number of sessions cleaned up.
    """
    removed = storage.delete_expired_auth_sessions(utcnow())
    if removed:
        logger.info("Removed %d expired login session(s)", removed)
    return removed
