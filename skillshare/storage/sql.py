"""
Relational storage backend on SQLAlchemy.

Every public method opens its own ORM session from the sessionmaker and closes
it on every exit path, so a pooled connection is held for exactly one
operation. Enrolled counts are never stored: they come from a grouped count of
confirmed bookings joined into each session query.
"""

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Callable, Iterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query
from sqlalchemy.orm import Session as DbSession

from skillshare.database import init_db, make_session_factory
from skillshare.errors import (
    CapacityExceeded,
    DuplicateBooking,
    IntegrityViolation,
    NotFound,
    UsernameTaken,
)
from skillshare.models import AuthSession, Booking, User
from skillshare.models import Session as SessionModel
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

CONFIRMED = BookingStatus.CONFIRMED.value
ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_BOOKING_STATUSES]


def _user_record(user: User) -> UserRecord:
    return UserRecord.model_validate(user)


def _session_view(session: SessionModel, teacher: Optional[User], enrolled: Optional[int]) -> SessionView:
    teacher_name, teacher_title = teacher_display(_user_record(teacher) if teacher else None)
    return SessionView(
        id=session.id,
        title=session.title,
        skill_category=session.skill_category,
        description=session.description,
        date=session.date,
        duration=session.duration,
        capacity=session.capacity,
        teacher_id=session.teacher_id,
        created_at=session.created_at,
        teacher_name=teacher_name,
        teacher_title=teacher_title,
        enrolled_count=enrolled or 0,
    )


class SqlStorage(IStorage):
    """SQLAlchemy implementation of IStorage."""

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        self._engine = engine
        self._session_factory = make_session_factory(engine)
        self._clock = clock

    def initialize(self) -> None:
        init_db(self._engine)

    def close(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _session(self) -> Iterator[DbSession]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def _transaction(self) -> Iterator[DbSession]:
        """Session that commits on success and rolls back on any exception."""
        with self._session() as db:
            try:
                yield db
                db.commit()
            except SQLAlchemyError as exc:
                logger.error("Storage transaction failed: %s", exc)
                db.rollback()
                raise
            except Exception:
                db.rollback()
                raise

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._session() as db:
            user = db.get(User, user_id)
            return _user_record(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self._session() as db:
            user = self._find_user_by_username(db, username)
            return _user_record(user) if user else None

    def create_user(self, data: UserCreate) -> UserRecord:
        try:
            with self._transaction() as db:
                if self._find_user_by_username(db, data.username) is not None:
                    raise UsernameTaken(data.username)

                values = data.model_dump(mode="json", include=set(UserCreate.model_fields))
                user = User(**values, created_at=self._clock())
                db.add(user)
                db.flush()
                record = _user_record(user)
        except IntegrityError:
            # Lost a race with a concurrent registration of the same name
            raise UsernameTaken(data.username)

        logger.info("Created user %s (%s) with role %s", record.id, record.username, record.role.value)
        return record

    @staticmethod
    def _find_user_by_username(db: DbSession, username: str) -> Optional[User]:
        return db.query(User).filter(func.lower(User.username) == username.lower()).first()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @staticmethod
    def _session_query(db: DbSession) -> Query:
        """Sessions joined with their teacher and confirmed-booking count."""
        enrolled = (
            db.query(
                Booking.session_id.label("session_id"),
                func.count(Booking.id).label("enrolled"),
            )
            .filter(Booking.status == CONFIRMED)
            .group_by(Booking.session_id)
            .subquery()
        )
        return (
            db.query(SessionModel, User, enrolled.c.enrolled)
            .outerjoin(User, User.id == SessionModel.teacher_id)
            .outerjoin(enrolled, enrolled.c.session_id == SessionModel.id)
        )

    def _load_session_view(self, db: DbSession, session_id: int) -> Optional[SessionView]:
        row = self._session_query(db).filter(SessionModel.id == session_id).first()
        return _session_view(*row) if row else None

    def get_all_sessions(self) -> List[SessionView]:
        with self._session() as db:
            rows = self._session_query(db).order_by(SessionModel.id).all()
            return [_session_view(*row) for row in rows]

    def get_session_by_id(self, session_id: int) -> Optional[SessionView]:
        with self._session() as db:
            return self._load_session_view(db, session_id)

    def get_sessions_by_teacher_id(self, teacher_id: int) -> List[SessionView]:
        with self._session() as db:
            rows = (
                self._session_query(db)
                .filter(SessionModel.teacher_id == teacher_id)
                .order_by(SessionModel.id)
                .all()
            )
            return [_session_view(*row) for row in rows]

    def get_recommended_sessions(self, user_id: int) -> List[SessionView]:
        with self._session() as db:
            booked = select(Booking.session_id).where(Booking.learner_id == user_id)
            rows = (
                self._session_query(db)
                .filter(SessionModel.id.notin_(booked))
                .order_by(SessionModel.date, SessionModel.id)
                .limit(RECOMMENDATION_LIMIT)
                .all()
            )
            return [_session_view(*row) for row in rows]

    def create_session(self, data: SessionCreate) -> SessionView:
        with self._transaction() as db:
            teacher = db.get(User, data.teacher_id)
            if teacher is None:
                raise NotFound("Teacher not found")

            session = SessionModel(**data.model_dump(), created_at=self._clock())
            db.add(session)
            db.flush()
            view = _session_view(session, teacher, 0)

        logger.info("Teacher %s created session %s (%r)", view.teacher_id, view.id, view.title)
        return view

    def update_session(self, session_id: int, data: SessionUpdate) -> SessionView:
        changes = data.changes()
        with self._transaction() as db:
            session = db.get(SessionModel, session_id)
            if session is None:
                raise NotFound("Session not found")

            for field, value in changes.items():
                setattr(session, field, value)
            db.flush()
            view = self._load_session_view(db, session_id)

        logger.info("Updated session %s fields %s", session_id, sorted(changes))
        return view

    def delete_session(self, session_id: int) -> None:
        with self._transaction() as db:
            session = db.get(SessionModel, session_id)
            if session is None:
                raise NotFound("Session not found")

            removed = (
                db.query(Booking)
                .filter(Booking.session_id == session_id)
                .delete(synchronize_session=False)
            )
            db.delete(session)

        logger.info("Deleted session %s and %d booking(s)", session_id, removed)

    def get_session_enrollment_count(self, session_id: int) -> int:
        with self._session() as db:
            return self._count_confirmed(db, session_id)

    @staticmethod
    def _count_confirmed(db: DbSession, session_id: int) -> int:
        count = (
            db.query(func.count(Booking.id))
            .filter(Booking.session_id == session_id, Booking.status == CONFIRMED)
            .scalar()
        )
        return count or 0

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def _booking_views(self, db: DbSession, bookings: List[Booking]) -> List[BookingView]:
        """
        Embed session views and learners in three queries, whatever the count.

        Raises IntegrityViolation when a booking points at a missing row.
        """
        if not bookings:
            return []

        session_ids = {b.session_id for b in bookings}
        learner_ids = {b.learner_id for b in bookings}
        sessions = {
            row[0].id: _session_view(*row)
            for row in self._session_query(db).filter(SessionModel.id.in_(session_ids)).all()
        }
        learners = {
            user.id: _user_record(user)
            for user in db.query(User).filter(User.id.in_(learner_ids)).all()
        }

        views = []
        for booking in bookings:
            session = sessions.get(booking.session_id)
            learner = learners.get(booking.learner_id)
            if session is None or learner is None:
                logger.error(
                    "Booking %s references missing session %s or learner %s",
                    booking.id, booking.session_id, booking.learner_id,
                )
                raise IntegrityViolation(
                    f"Could not find session or learner for booking {booking.id}",
                    entity_id=booking.id,
                )
            views.append(
                BookingView(
                    id=booking.id,
                    session_id=booking.session_id,
                    learner_id=booking.learner_id,
                    status=booking.status,
                    created_at=booking.created_at,
                    session=session,
                    learner=learner,
                )
            )
        return views

    def get_booking_by_id(self, booking_id: int) -> Optional[BookingView]:
        with self._session() as db:
            booking = db.get(Booking, booking_id)
            return self._booking_views(db, [booking])[0] if booking else None

    def get_bookings_by_user_id(self, learner_id: int) -> List[BookingView]:
        with self._session() as db:
            bookings = (
                db.query(Booking)
                .filter(Booking.learner_id == learner_id)
                .order_by(Booking.id)
                .all()
            )
            return self._booking_views(db, bookings)

    def get_bookings_by_session_id(self, session_id: int) -> List[BookingView]:
        with self._session() as db:
            bookings = (
                db.query(Booking)
                .filter(Booking.session_id == session_id)
                .order_by(Booking.id)
                .all()
            )
            return self._booking_views(db, bookings)

    def get_booking_by_session_and_learner(
        self, session_id: int, learner_id: int
    ) -> Optional[BookingView]:
        with self._session() as db:
            booking = (
                db.query(Booking)
                .filter(Booking.session_id == session_id, Booking.learner_id == learner_id)
                .order_by(Booking.id.desc())
                .first()
            )
            return self._booking_views(db, [booking])[0] if booking else None

    def create_booking(self, data: BookingCreate) -> BookingView:
        with self._transaction() as db:
            # Row lock serializes bookings on one session. SQLite ignores it;
            # there the transaction already holds the write lock (BEGIN IMMEDIATE)
            session = (
                db.query(SessionModel)
                .filter(SessionModel.id == data.session_id)
                .with_for_update()
                .first()
            )
            if session is None:
                raise NotFound("Session not found")
            if db.get(User, data.learner_id) is None:
                raise NotFound("Learner not found")

            duplicate = (
                db.query(Booking.id)
                .filter(
                    Booking.session_id == data.session_id,
                    Booking.learner_id == data.learner_id,
                    Booking.status.in_(ACTIVE_STATUS_VALUES),
                )
                .first()
            )
            if duplicate is not None:
                logger.warning(
                    "Rejected duplicate booking of session %s by learner %s",
                    data.session_id, data.learner_id,
                )
                raise DuplicateBooking(data.session_id, data.learner_id)

            if data.status == BookingStatus.CONFIRMED:
                enrolled = self._count_confirmed(db, session.id)
                if enrolled >= session.capacity:
                    logger.warning(
                        "Rejected booking of full session %s (%d/%d) by learner %s",
                        session.id, enrolled, session.capacity, data.learner_id,
                    )
                    raise CapacityExceeded(session.id, session.capacity)

            booking = Booking(
                session_id=data.session_id,
                learner_id=data.learner_id,
                status=data.status.value,
                created_at=self._clock(),
            )
            db.add(booking)
            db.flush()
            view = self._booking_views(db, [booking])[0]

        logger.info(
            "Learner %s booked session %s (booking %s, %s)",
            view.learner_id, view.session_id, view.id, view.status.value,
        )
        return view

    def delete_booking(self, booking_id: int) -> None:
        with self._transaction() as db:
            booking = db.get(Booking, booking_id)
            if booking is None:
                raise NotFound("Booking not found")
            session_id = booking.session_id
            db.delete(booking)

        logger.info("Deleted booking %s on session %s", booking_id, session_id)

    # ------------------------------------------------------------------
    # Login sessions
    # ------------------------------------------------------------------

    def save_auth_session(self, token: str, user_id: int, expires_at: datetime) -> None:
        with self._transaction() as db:
            db.add(
                AuthSession(
                    token=token,
                    user_id=user_id,
                    created_at=self._clock(),
                    expires_at=expires_at,
                )
            )

    def get_auth_session_user_id(self, token: str, now: datetime) -> Optional[int]:
        with self._session() as db:
            row = (
                db.query(AuthSession.user_id)
                .filter(AuthSession.token == token, AuthSession.expires_at > now)
                .first()
            )
            return row[0] if row else None

    def delete_auth_session(self, token: str) -> bool:
        with self._transaction() as db:
            result = db.query(AuthSession).filter(AuthSession.token == token).delete()
        return result > 0

    def delete_expired_auth_sessions(self, now: datetime) -> int:
        with self._transaction() as db:
            result = db.query(AuthSession).filter(AuthSession.expires_at <= now).delete()
        return result
