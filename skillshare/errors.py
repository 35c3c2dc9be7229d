"""
Application exceptions.

Every failure the storage engine or the route layer can signal is a distinct
subclass of SkillShareError carrying the HTTP status it maps to, so handlers
never have to guess from a message string.
"""
from typing import List, NamedTuple, Optional


class FieldError(NamedTuple):
    field: str
    message: str


class SkillShareError(Exception):
    """Base exception for all SkillShare application exceptions."""
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationFailed(SkillShareError):
    """Raised when input does not satisfy its schema. Keeps every failing field."""
    status_code = 400

    def __init__(self, errors: List[FieldError], message: str = "Invalid input"):
        self.errors = list(errors)
        super().__init__(message)


class NotFound(SkillShareError):
    """Raised when a referenced entity is absent."""
    status_code = 404


class AlreadyExists(SkillShareError):
    status_code = 400


class UsernameTaken(AlreadyExists):
    def __init__(self, username: str):
        self.username = username
        super().__init__("Username already exists")


class DuplicateBooking(AlreadyExists):
    def __init__(self, session_id: int, learner_id: int):
        self.session_id = session_id
        self.learner_id = learner_id
        super().__init__("You have already booked this session")


class CapacityExceeded(SkillShareError):
    status_code = 400

    def __init__(self, session_id: int, capacity: int):
        self.session_id = session_id
        self.capacity = capacity
        super().__init__("Session is full")


class AuthenticationRequired(SkillShareError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class Forbidden(SkillShareError):
    """Role or ownership mismatch."""
    status_code = 403


class IntegrityViolation(SkillShareError):
    """
    A stored reference points to a row that no longer exists.

    Fatal for the operation that hit it, never for the process.
    """
    status_code = 500

    def __init__(self, message: str, entity_id: Optional[int] = None):
        self.entity_id = entity_id
        super().__init__(message)
