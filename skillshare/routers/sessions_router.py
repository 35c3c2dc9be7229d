import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, Response, status

from skillshare.dependencies import get_current_user, get_storage, require_teacher
from skillshare.errors import Forbidden, NotFound
from skillshare.schemas import (
    BookingResponse,
    SessionCreate,
    SessionUpdate,
    SessionView,
    UserRecord,
    parse_input,
)
from skillshare.storage import IStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _owned_session(storage: IStorage, session_id: int, teacher: UserRecord, action: str) -> SessionView:
    session = storage.get_session_by_id(session_id)
    if session is None:
        raise NotFound("Session not found")
    if session.teacher_id != teacher.id:
        raise Forbidden(f"Not authorized to {action} this session")
    return session


@router.get("", response_model=List[SessionView])
def list_sessions(
    user: UserRecord = Depends(get_current_user),
    storage: IStorage = Depends(get_storage),
):
    return storage.get_all_sessions()


# Fixed paths are declared before /{session_id} so they are not captured by it
@router.get("/recommended", response_model=List[SessionView])
def recommended_sessions(
    user: UserRecord = Depends(get_current_user),
    storage: IStorage = Depends(get_storage),
):
    """The three earliest sessions the caller has not booked, past dates included."""
    return storage.get_recommended_sessions(user.id)


@router.get("/teaching", response_model=List[SessionView])
def teaching_sessions(
    teacher: UserRecord = Depends(require_teacher),
    storage: IStorage = Depends(get_storage),
):
    return storage.get_sessions_by_teacher_id(teacher.id)


@router.get("/{session_id}", response_model=SessionView)
def get_session(
    session_id: int,
    user: UserRecord = Depends(get_current_user),
    storage: IStorage = Depends(get_storage),
):
    session = storage.get_session_by_id(session_id)
    if session is None:
        raise NotFound("Session not found")
    return session


@router.post("", response_model=SessionView, status_code=status.HTTP_201_CREATED)
def create_session(
    payload: Dict[str, Any] = Body(...),
    teacher: UserRecord = Depends(require_teacher),
    storage: IStorage = Depends(get_storage),
):
    """
    Publish a new session owned by the caller.

    Any teacher id in the body is ignored in favour of the caller's id.
    """
    logger.debug("Session creation request body: %s", payload)

    body = {k: v for k, v in payload.items() if k not in ("teacherId", "teacher_id")}
    data = parse_input(SessionCreate, {**body, "teacherId": teacher.id})

    return storage.create_session(data)


@router.patch("/{session_id}", response_model=SessionView)
def update_session(
    session_id: int,
    payload: Dict[str, Any] = Body(...),
    teacher: UserRecord = Depends(require_teacher),
    storage: IStorage = Depends(get_storage),
):
    _owned_session(storage, session_id, teacher, "update")
    changes = parse_input(SessionUpdate, payload)
    return storage.update_session(session_id, changes)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(
    session_id: int,
    teacher: UserRecord = Depends(require_teacher),
    storage: IStorage = Depends(get_storage),
):
    _owned_session(storage, session_id, teacher, "delete")
    storage.delete_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{session_id}/bookings", response_model=List[BookingResponse])
def session_roster(
    session_id: int,
    teacher: UserRecord = Depends(require_teacher),
    storage: IStorage = Depends(get_storage),
):
    """Bookings on one of the caller's sessions."""
    _owned_session(storage, session_id, teacher, "view bookings of")
    return storage.get_bookings_by_session_id(session_id)
