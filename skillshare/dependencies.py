from fastapi import Depends, Request

from skillshare.auth import get_user_from_session
from skillshare.config import Settings
from skillshare.errors import AuthenticationRequired, Forbidden
from skillshare.schemas import Role, UserRecord
from skillshare.storage import IStorage


def get_storage(request: Request) -> IStorage:
    """The storage object built by create_app for this application."""
    return request.app.state.storage


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_user(
    request: Request,
    storage: IStorage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
) -> UserRecord:
    """
    Resolve the authenticated user from the session cookie.

    Raises AuthenticationRequired (401) when the cookie is missing, unknown or expired.
    """
    session_id = request.cookies.get(settings.cookie_name)
    if not session_id:
        raise AuthenticationRequired()

    user = get_user_from_session(storage, session_id)
    if user is None:
        raise AuthenticationRequired()
    return user


def require_teacher(user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if user.role != Role.TEACHER:
        raise Forbidden("Not authorized as teacher")
    return user
