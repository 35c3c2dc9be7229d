"""
Storage engine interface.

Both backends (MemoryStorage and SqlStorage) implement IStorage and must be
indistinguishable to the route layer. The only intended difference is how the
enrolled count of a session is obtained:

- MemoryStorage keeps a counter per session and updates it on booking
  create/delete
- SqlStorage aggregates confirmed bookings on every read

Getters return ``None`` for a missing entity. Mutations on a missing entity
raise NotFound; they never silently no-op.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from skillshare.schemas import (
    BookingCreate,
    BookingView,
    SessionCreate,
    SessionUpdate,
    SessionView,
    UserCreate,
    UserRecord,
)

# Recommendations are cut to this many sessions
RECOMMENDATION_LIMIT = 3

UNKNOWN_TEACHER_NAME = "Unknown Teacher"
DEFAULT_TEACHER_TITLE = "Teacher"


class IStorage(ABC):
    """
    Abstract storage interface for users, sessions, bookings and login sessions.
    """

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        """Retrieve a user by id."""

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        """Retrieve a user by username, ignoring case."""

    @abstractmethod
    def create_user(self, data: UserCreate) -> UserRecord:
        """
        Persist a new user with a fresh id and creation timestamp.

        Raises:
            UsernameTaken: If the username exists in any letter case
        """

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @abstractmethod
    def get_all_sessions(self) -> List[SessionView]:
        """Every session, annotated with teacher display fields and enrolled count."""

    @abstractmethod
    def get_session_by_id(self, session_id: int) -> Optional[SessionView]:
        """Single annotated session."""

    @abstractmethod
    def get_sessions_by_teacher_id(self, teacher_id: int) -> List[SessionView]:
        """Sessions owned by one teacher."""

    @abstractmethod
    def get_recommended_sessions(self, user_id: int) -> List[SessionView]:
        """
        Sessions the user has not booked (in any status).

        Ordered by ascending date, equal dates in id order, cut to
        RECOMMENDATION_LIMIT entries.
        """

    @abstractmethod
    def create_session(self, data: SessionCreate) -> SessionView:
        """
        Persist a new session. The returned view has enrolled_count == 0.

        Raises:
            NotFound: If teacher_id does not reference an existing user
        """

    @abstractmethod
    def update_session(self, session_id: int, data: SessionUpdate) -> SessionView:
        """
        Merge the fields present in ``data`` onto the stored session.

        Raises:
            NotFound: If the session does not exist
        """

    @abstractmethod
    def delete_session(self, session_id: int) -> None:
        """
        Remove every booking of the session, then the session itself.

        Raises:
            NotFound: If the session does not exist
        """

    @abstractmethod
    def get_session_enrollment_count(self, session_id: int) -> int:
        """Number of confirmed bookings on the session."""

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    @abstractmethod
    def get_booking_by_id(self, booking_id: int) -> Optional[BookingView]:
        """
        Booking with embedded session and learner.

        Raises:
            IntegrityViolation: If the referenced session or learner is gone
        """

    @abstractmethod
    def get_bookings_by_user_id(self, learner_id: int) -> List[BookingView]:
        """All bookings held by a learner."""

    @abstractmethod
    def get_bookings_by_session_id(self, session_id: int) -> List[BookingView]:
        """All bookings on a session."""

    @abstractmethod
    def get_booking_by_session_and_learner(
        self, session_id: int, learner_id: int
    ) -> Optional[BookingView]:
        """The learner's booking on a session, if any."""

    @abstractmethod
    def create_booking(self, data: BookingCreate) -> BookingView:
        """
        Persist a booking after checking duplicates and capacity.

        The checks and the insert form one critical section per session, so
        concurrent callers cannot push a session past its capacity.

        Raises:
            NotFound: If the session or the learner does not exist
            DuplicateBooking: If the learner already holds an active booking
            CapacityExceeded: If a confirmed booking would exceed capacity
        """

    @abstractmethod
    def delete_booking(self, booking_id: int) -> None:
        """
        Remove a booking, releasing its seat if it was confirmed.

        Raises:
            NotFound: If the booking does not exist
        """

    # ------------------------------------------------------------------
    # Login sessions
    # ------------------------------------------------------------------

    @abstractmethod
    def save_auth_session(self, token: str, user_id: int, expires_at: datetime) -> None:
        """Store a login session token."""

    @abstractmethod
    def get_auth_session_user_id(self, token: str, now: datetime) -> Optional[int]:
        """User id behind an unexpired token."""

    @abstractmethod
    def delete_auth_session(self, token: str) -> bool:
        """Returns True if the token existed."""

    @abstractmethod
    def delete_expired_auth_sessions(self, now: datetime) -> int:
        """Returns number of sessions removed."""

    def initialize(self) -> None:
        """Prepare the backend (create tables). Called on application startup."""

    def close(self) -> None:
        """Release backend resources. Called on application shutdown."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def teacher_display(teacher: Optional[UserRecord]) -> tuple:
    """(teacher_name, teacher_title) for a session view."""
    if teacher is None:
        return UNKNOWN_TEACHER_NAME, DEFAULT_TEACHER_TITLE
    return teacher.full_name, teacher.specialization or DEFAULT_TEACHER_TITLE
