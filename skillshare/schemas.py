from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from skillshare.errors import FieldError, ValidationFailed

INVALID_DATE_MESSAGE = "Invalid date format. Please use ISO format (YYYY-MM-DD or with time component)."


class Role(str, Enum):
    TEACHER = "teacher"
    LEARNER = "learner"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    WAITLISTED = "waitlisted"


# A learner may hold only one booking in these states per session
ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.WAITLISTED)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return as_utc(datetime.fromisoformat(value.strip()))
        except ValueError:
            pass
    raise ValueError(INVALID_DATE_MESSAGE)


def _combine_date_and_time(data: Any) -> Any:
    # The session form sends date and time as two fields
    if isinstance(data, Mapping) and data.get("time") and data.get("date"):
        data = dict(data)
        data["date"] = f"{data['date']}T{data.pop('time')}"
    return data


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class UserCreate(CamelModel):
    """
    Registration payload as the storage layer receives it.

    The password is opaque here. Length is checked on the plain value before
    the auth layer swaps in the hash.
    """
    username: str = Field(..., min_length=3, max_length=64)
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    role: Role = Role.LEARNER
    specialization: Optional[str] = None
    experience: Optional[int] = Field(None, ge=0)
    bio: Optional[str] = None


class RegisterRequest(UserCreate):
    """Register form. confirm_password is compared by the handler, not here."""
    confirm_password: Optional[str] = None


class LoginRequest(CamelModel):
    username: str
    password: str


class SessionCreate(CamelModel):
    """
    Session form payload.

    Accepts either one ISO-8601 ``date`` or a ``date`` plus ``time`` pair.
    After validation ``date`` is an aware UTC datetime.
    """
    title: str = Field(..., min_length=5, max_length=255)
    skill_category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=10)
    date: datetime
    duration: float = Field(..., ge=0.5)
    capacity: int = Field(..., ge=1)
    teacher_id: int

    @model_validator(mode="before")
    @classmethod
    def combine_date_and_time(cls, data: Any) -> Any:
        return _combine_date_and_time(data)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> datetime:
        return _parse_datetime(v)


class SessionUpdate(CamelModel):
    """Partial session edit. Ownership (teacher_id) cannot be changed."""
    title: Optional[str] = Field(None, min_length=5, max_length=255)
    skill_category: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=10)
    date: Optional[datetime] = None
    duration: Optional[float] = Field(None, ge=0.5)
    capacity: Optional[int] = Field(None, ge=1)

    @model_validator(mode="before")
    @classmethod
    def combine_date_and_time(cls, data: Any) -> Any:
        return _combine_date_and_time(data)

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Optional[datetime]:
        if v is None:
            return None
        return _parse_datetime(v)

    def changes(self) -> dict:
        """Only the fields the caller actually sent, with explicit nulls dropped."""
        return {k: v for k, v in self.model_dump(exclude_unset=True).items() if v is not None}


class BookingCreate(CamelModel):
    session_id: int
    learner_id: int
    status: BookingStatus = BookingStatus.CONFIRMED


# ---------------------------------------------------------------------------
# Views returned by the storage engine
# ---------------------------------------------------------------------------

class UserRecord(CamelModel):
    id: int
    username: str
    password: str
    first_name: str
    last_name: str
    email: str
    role: Role
    specialization: Optional[str] = None
    experience: Optional[int] = None
    bio: Optional[str] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class SessionView(CamelModel):
    id: int
    title: str
    skill_category: str
    description: str
    date: datetime
    duration: float
    capacity: int
    teacher_id: int
    created_at: datetime
    teacher_name: str
    teacher_title: str
    enrolled_count: int

    # SQLite hands back naive datetimes
    @field_validator("date", "created_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def is_full(self) -> bool:
        return self.enrolled_count >= self.capacity


class BookingView(CamelModel):
    id: int
    session_id: int
    learner_id: int
    status: BookingStatus
    created_at: datetime
    session: SessionView
    learner: UserRecord

    @field_validator("created_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_utc(v)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class UserResponse(CamelModel):
    """
    Safe user representation for API responses.

    Never include password in any response.
    """
    id: int
    username: str
    first_name: str
    last_name: str
    email: str
    role: Role
    specialization: Optional[str] = None
    experience: Optional[int] = None
    bio: Optional[str] = None
    created_at: datetime


class BookingResponse(CamelModel):
    id: int
    session_id: int
    learner_id: int
    status: BookingStatus
    created_at: datetime
    session: SessionView
    learner: UserResponse


class MessageResponse(BaseModel):
    """
    Generic message response for operations without specific return data.
    """
    message: str


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_input(model: Type[ModelT], data: Any) -> ModelT:
    """
    Validate untrusted input against ``model``.

    Pure and deterministic: returns the normalized model or raises
    ValidationFailed listing every failing field. Never returns a partial value.
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailed(field_errors(exc.errors())) from exc


def field_errors(errors: Iterable[dict]) -> List[FieldError]:
    """Flatten pydantic error dicts into (field, message) pairs."""
    result = []
    for error in errors:
        field = ".".join(str(part) for part in error["loc"]) or "__root__"
        message = error["msg"]
        # pydantic prefixes messages raised from validators
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        result.append(FieldError(field, message))
    return result
