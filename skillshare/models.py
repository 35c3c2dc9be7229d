from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text

from skillshare.database import Base


class User(Base):
    """
    Teacher or learner account.

    - username is unique; lookups and the uniqueness check go through lower()
    - password holds whatever credential the auth layer hands over (an argon2 hash)
    - specialization/experience/bio are only meaningful for teachers
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default="learner")
    specialization = Column(String(255), nullable=True)
    experience = Column(Integer, nullable=True)
    bio = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"


class Session(Base):
    """
    A bookable teaching slot.

    enrolled count is not stored here; it is aggregated from bookings on read.
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    skill_category = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, index=True)
    duration = Column(Float, nullable=False)
    capacity = Column(Integer, nullable=False)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Session(id={self.id}, title={self.title}, teacher_id={self.teacher_id})>"


class Booking(Base):
    """
    A learner's claim on a session.

    No unique constraint on (session_id, learner_id). The create path rejects a
    second active booking; cancelled rows may coexist with a new one.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    learner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default="confirmed")
    created_at = Column(DateTime(timezone=True), nullable=False)

    # Enrollment counts filter on both columns
    __table_args__ = (
        Index("ix_booking_session_status", "session_id", "status"),
    )

    def __repr__(self):
        return f"<Booking(id={self.id}, session_id={self.session_id}, learner_id={self.learner_id}, status={self.status})>"


class AuthSession(Base):
    """
    Server-side login session.

    token is the opaque value stored in the cookie (32 random bytes, hex encoded).
    """
    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        Index("ix_auth_session_lookup", "token", "expires_at"),
    )

    def __repr__(self):
        return f"<AuthSession(id={self.id}, user_id={self.user_id})>"
