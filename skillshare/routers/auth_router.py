from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request, Response, status

from skillshare.auth import create_session, delete_session, hash_password, verify_password
from skillshare.config import Settings
from skillshare.dependencies import get_app_settings, get_current_user, get_storage
from skillshare.errors import AuthenticationRequired, FieldError, ValidationFailed
from skillshare.schemas import (
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UserCreate,
    UserRecord,
    UserResponse,
    parse_input,
)
from skillshare.storage import IStorage

router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
    response: Response,
    payload: Dict[str, Any] = Body(...),
    storage: IStorage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    """
    Create new user account and log it in.

    Error cases:
    - 400: Validation failed, passwords differ, or username already exists
    """
    request = parse_input(RegisterRequest, payload)
    if request.confirm_password is not None and request.confirm_password != request.password:
        raise ValidationFailed([FieldError("confirmPassword", "Passwords do not match")])

    # Length rules apply to the plain password; only the hash is stored
    data = UserCreate(**request.model_dump(exclude={"confirm_password"}))
    data = data.model_copy(update={"password": hash_password(request.password)})

    user = storage.create_user(data)

    session_id = create_session(storage, user.id, settings)
    _set_session_cookie(response, session_id, settings)

    return user


@router.post("/login", response_model=UserResponse)
def login(
    response: Response,
    payload: Dict[str, Any] = Body(...),
    storage: IStorage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    """
    Authenticate user and create session.

    Generic error message prevents username enumeration.
    """
    credentials = parse_input(LoginRequest, payload)
    user = storage.get_user_by_username(credentials.username)

    if not user or not verify_password(credentials.password, user.password):
        raise AuthenticationRequired("Invalid credentials")

    session_id = create_session(storage, user.id, settings)
    _set_session_cookie(response, session_id, settings)

    return user


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    storage: IStorage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    """
    Invalidate session and clear cookie.

    Returns success even if session doesn't exist (idempotent).
    """
    session_id = request.cookies.get(settings.cookie_name)
    if session_id:
        delete_session(storage, session_id)

    _clear_session_cookie(response, settings)

    return MessageResponse(message="Logged out successfully")


@router.get("/user", response_model=UserResponse)
def get_current_user_info(user: UserRecord = Depends(get_current_user)):
    """Authenticated user's profile. 401 if not logged in."""
    return user


def _cookie_domain(settings: Settings):
    return settings.cookie_domain if settings.cookie_domain != "localhost" else None


def _set_session_cookie(response: Response, session_id: str, settings: Settings):
    """
    Set session cookie with security flags.

    The cookie only contains the session ID (opaque token).
    All user data stays server-side.
    """
    response.set_cookie(
        key=settings.cookie_name,
        value=session_id,
        httponly=settings.cookie_httponly,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        max_age=settings.session_expire_hours * 3600,
        path="/",
        domain=_cookie_domain(settings),
    )


def _clear_session_cookie(response: Response, settings: Settings):
    response.set_cookie(
        key=settings.cookie_name,
        value="",
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        max_age=0,
        path="/",
        domain=_cookie_domain(settings),
    )
