from typing import List

from fastapi import APIRouter, Depends, Response, status

from skillshare.dependencies import get_current_user, get_storage
from skillshare.errors import Forbidden, NotFound
from skillshare.schemas import BookingCreate, BookingResponse, BookingStatus, Role, UserRecord, parse_input
from skillshare.storage import IStorage

router = APIRouter(prefix="/api", tags=["bookings"])


@router.get("/bookings", response_model=List[BookingResponse])
def list_bookings(
    user: UserRecord = Depends(get_current_user),
    storage: IStorage = Depends(get_storage),
):
    return storage.get_bookings_by_user_id(user.id)


@router.post(
    "/sessions/{session_id}/book",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def book_session(
    session_id: int,
    user: UserRecord = Depends(get_current_user),
    storage: IStorage = Depends(get_storage),
):
    """
    Book a seat for the calling learner.

    Error cases:
    - 404: Session does not exist
    - 403: Caller is not a learner
    - 400: Already booked, or session is full
    """
    if storage.get_session_by_id(session_id) is None:
        raise NotFound("Session not found")

    if user.role != Role.LEARNER:
        raise Forbidden("Only learners can book sessions")

    data = parse_input(
        BookingCreate,
        {"sessionId": session_id, "learnerId": user.id, "status": BookingStatus.CONFIRMED.value},
    )
    return storage.create_booking(data)


@router.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_booking(
    booking_id: int,
    user: UserRecord = Depends(get_current_user),
    storage: IStorage = Depends(get_storage),
):
    booking = storage.get_booking_by_id(booking_id)
    if booking is None:
        raise NotFound("Booking not found")

    if booking.learner_id != user.id:
        raise Forbidden("Not authorized to cancel this booking")

    storage.delete_booking(booking_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
