"""
Volatile storage backend.

Keeps users, sessions, bookings and login sessions in plain dicts owned by one
MemoryStorage instance. Lets the app run without a database during
development and tests; everything is lost when the process exits.

Each session row carries a denormalized ``enrolled_count`` that is updated
whenever a confirmed booking is created or removed. Every public method runs
under one re-entrant lock, so a capacity check and the insert that follows it
cannot interleave with another request.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
import itertools
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from skillshare.errors import (
    CapacityExceeded,
    DuplicateBooking,
    IntegrityViolation,
    NotFound,
    UsernameTaken,
)
from skillshare.schemas import (
    ACTIVE_BOOKING_STATUSES,
    BookingCreate,
    BookingStatus,
    BookingView,
    SessionCreate,
    SessionUpdate,
    SessionView,
    UserCreate,
    UserRecord,
)
from skillshare.storage.base import RECOMMENDATION_LIMIT, IStorage, teacher_display, utcnow

logger = logging.getLogger(__name__)


@dataclass
class _SessionRow:
    id: int
    title: str
    skill_category: str
    description: str
    date: datetime
    duration: float
    capacity: int
    teacher_id: int
    created_at: datetime
    enrolled_count: int = 0


@dataclass
class _BookingRow:
    id: int
    session_id: int
    learner_id: int
    status: BookingStatus
    created_at: datetime


@dataclass
class _AuthEntry:
    user_id: int
    expires_at: datetime


class MemoryStorage(IStorage):
    """Dict-backed implementation of IStorage."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._users: Dict[int, UserRecord] = {}
        self._sessions: Dict[int, _SessionRow] = {}
        self._bookings: Dict[int, _BookingRow] = {}
        self._auth_sessions: Dict[str, _AuthEntry] = {}

        self._user_ids = itertools.count(1)
        self._session_ids = itertools.count(1)
        self._booking_ids = itertools.count(1)

        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._find_user_by_username(username)
            return user.model_copy() if user else None

    def create_user(self, data: UserCreate) -> UserRecord:
        with self._lock:
            if self._find_user_by_username(data.username) is not None:
                raise UsernameTaken(data.username)

            user = UserRecord(id=next(self._user_ids), created_at=self._clock(), **data.model_dump())
            self._users[user.id] = user

        logger.info("Created user %s (%s) with role %s", user.id, user.username, user.role.value)
        return user.model_copy()

    def _find_user_by_username(self, username: str) -> Optional[UserRecord]:
        wanted = username.lower()
        for user in self._users.values():
            if user.username.lower() == wanted:
                return user
        return None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_all_sessions(self) -> List[SessionView]:
        with self._lock:
            return self._session_views(self._sessions.values())

    def get_session_by_id(self, session_id: int) -> Optional[SessionView]:
        with self._lock:
            row = self._sessions.get(session_id)
            return self._session_view(row) if row else None

    def get_sessions_by_teacher_id(self, teacher_id: int) -> List[SessionView]:
        with self._lock:
            return self._session_views(
                row for row in self._sessions.values() if row.teacher_id == teacher_id
            )

    def get_recommended_sessions(self, user_id: int) -> List[SessionView]:
        with self._lock:
            booked = {b.session_id for b in self._bookings.values() if b.learner_id == user_id}
            candidates = [row for row in self._sessions.values() if row.id not in booked]
            # sorted() is stable and the dict iterates in id order
            candidates = sorted(candidates, key=lambda row: row.date)
            return self._session_views(candidates[:RECOMMENDATION_LIMIT])

    def create_session(self, data: SessionCreate) -> SessionView:
        with self._lock:
            if data.teacher_id not in self._users:
                raise NotFound("Teacher not found")

            row = _SessionRow(
                id=next(self._session_ids),
                created_at=self._clock(),
                enrolled_count=0,
                **data.model_dump(),
            )
            self._sessions[row.id] = row
            view = self._session_view(row)

        logger.info("Teacher %s created session %s (%r)", row.teacher_id, row.id, row.title)
        return view

    def update_session(self, session_id: int, data: SessionUpdate) -> SessionView:
        with self._lock:
            row = self._sessions.get(session_id)
            if row is None:
                raise NotFound("Session not found")

            changes = data.changes()
            for field, value in changes.items():
                setattr(row, field, value)
            view = self._session_view(row)

        logger.info("Updated session %s fields %s", session_id, sorted(changes))
        return view

    def delete_session(self, session_id: int) -> None:
        with self._lock:
            if session_id not in self._sessions:
                raise NotFound("Session not found")

            doomed = [b for b in self._bookings.values() if b.session_id == session_id]
            for booking in doomed:
                self._remove_booking(booking)
            del self._sessions[session_id]

        logger.info("Deleted session %s and %d booking(s)", session_id, len(doomed))

    def get_session_enrollment_count(self, session_id: int) -> int:
        with self._lock:
            return sum(
                1
                for b in self._bookings.values()
                if b.session_id == session_id and b.status == BookingStatus.CONFIRMED
            )

    def _session_view(self, row: _SessionRow) -> SessionView:
        teacher_name, teacher_title = teacher_display(self._users.get(row.teacher_id))
        return SessionView(**asdict(row), teacher_name=teacher_name, teacher_title=teacher_title)

    def _session_views(self, rows: Iterable[_SessionRow]) -> List[SessionView]:
        return [self._session_view(row) for row in rows]

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def get_booking_by_id(self, booking_id: int) -> Optional[BookingView]:
        with self._lock:
            row = self._bookings.get(booking_id)
            return self._booking_view(row) if row else None

    def get_bookings_by_user_id(self, learner_id: int) -> List[BookingView]:
        with self._lock:
            return [self._booking_view(b) for b in self._bookings.values() if b.learner_id == learner_id]

    def get_bookings_by_session_id(self, session_id: int) -> List[BookingView]:
        with self._lock:
            return [self._booking_view(b) for b in self._bookings.values() if b.session_id == session_id]

    def get_booking_by_session_and_learner(
        self, session_id: int, learner_id: int
    ) -> Optional[BookingView]:
        with self._lock:
            # Latest booking wins when cancelled rows sit next to a newer one
            for row in reversed(list(self._bookings.values())):
                if row.session_id == session_id and row.learner_id == learner_id:
                    return self._booking_view(row)
            return None

    def create_booking(self, data: BookingCreate) -> BookingView:
        with self._lock:
            session = self._sessions.get(data.session_id)
            if session is None:
                raise NotFound("Session not found")
            if data.learner_id not in self._users:
                raise NotFound("Learner not found")

            for existing in self._bookings.values():
                if (
                    existing.session_id == data.session_id
                    and existing.learner_id == data.learner_id
                    and existing.status in ACTIVE_BOOKING_STATUSES
                ):
                    logger.warning(
                        "Rejected duplicate booking of session %s by learner %s",
                        data.session_id, data.learner_id,
                    )
                    raise DuplicateBooking(data.session_id, data.learner_id)

            if data.status == BookingStatus.CONFIRMED and session.enrolled_count >= session.capacity:
                logger.warning(
                    "Rejected booking of full session %s (%d/%d) by learner %s",
                    session.id, session.enrolled_count, session.capacity, data.learner_id,
                )
                raise CapacityExceeded(session.id, session.capacity)

            row = _BookingRow(
                id=next(self._booking_ids),
                session_id=data.session_id,
                learner_id=data.learner_id,
                status=data.status,
                created_at=self._clock(),
            )
            self._bookings[row.id] = row
            if row.status == BookingStatus.CONFIRMED:
                session.enrolled_count += 1
            view = self._booking_view(row)

        logger.info(
            "Learner %s booked session %s (booking %s, %s)",
            row.learner_id, row.session_id, row.id, row.status.value,
        )
        return view

    def delete_booking(self, booking_id: int) -> None:
        with self._lock:
            row = self._bookings.get(booking_id)
            if row is None:
                raise NotFound("Booking not found")
            self._remove_booking(row)

        logger.info("Deleted booking %s on session %s", booking_id, row.session_id)

    def _remove_booking(self, row: _BookingRow) -> None:
        # Caller holds self._lock
        del self._bookings[row.id]
        if row.status == BookingStatus.CONFIRMED:
            session = self._sessions.get(row.session_id)
            if session is not None:
                session.enrolled_count = max(0, session.enrolled_count - 1)

    def _booking_view(self, row: _BookingRow) -> BookingView:
        session = self._sessions.get(row.session_id)
        learner = self._users.get(row.learner_id)
        if session is None or learner is None:
            logger.error(
                "Booking %s references missing session %s or learner %s",
                row.id, row.session_id, row.learner_id,
            )
            raise IntegrityViolation(
                f"Could not find session or learner for booking {row.id}", entity_id=row.id
            )

        return BookingView(
            id=row.id,
            session_id=row.session_id,
            learner_id=row.learner_id,
            status=row.status,
            created_at=row.created_at,
            session=self._session_view(session),
            learner=learner.model_copy(),
        )

    # ------------------------------------------------------------------
    # Login sessions
    # ------------------------------------------------------------------

    def save_auth_session(self, token: str, user_id: int, expires_at: datetime) -> None:
        with self._lock:
            self._auth_sessions[token] = _AuthEntry(user_id=user_id, expires_at=expires_at)

    def get_auth_session_user_id(self, token: str, now: datetime) -> Optional[int]:
        with self._lock:
            entry = self._auth_sessions.get(token)
            if entry is None or entry.expires_at <= now:
                return None
            return entry.user_id

    def delete_auth_session(self, token: str) -> bool:
        with self._lock:
            return self._auth_sessions.pop(token, None) is not None

    def delete_expired_auth_sessions(self, now: datetime) -> int:
        with self._lock:
            expired = [token for token, entry in self._auth_sessions.items() if entry.expires_at <= now]
            for token in expired:
                del self._auth_sessions[token]
            return len(expired)
