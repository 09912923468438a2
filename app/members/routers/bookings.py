"""Member Booking Router - booking and cancelling classes"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_current_user
from app.core.limits import limiter
from app.core.notification_sender import send_notification
from app.members.crud.bookings import cancel_booking, create_booking, list_member_bookings
from app.members.models import BookingStatus
from app.members.schemas.bookings import (
    BookingCreate,
    BookingListResponse,
    BookingRead,
    CancelBookingResponse,
)
from app.staff.models import User

router = APIRouter(prefix="/members/bookings", tags=["Member Bookings"])


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def book_class(
    request: Request,
    data: BookingCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Book a class, spending one credit from the package that expires first.

    Errors: INSUFFICIENT_CREDITS, CREDITS_EXPIRED, CLASS_FULL, ALREADY_BOOKED,
    CLASS_CANCELLED, CLASS_IN_PAST, INVALID_CHILD.
    """
    booking = await create_booking(
        db, current_user.id, data.class_instance_id, data.child_id
    )

    background_tasks.add_task(
        send_notification,
        "booking_confirmed",
        current_user.id,
        {"booking_id": booking.id, "class_instance_id": booking.class_instance_id},
    )
    return booking


@router.post("/{booking_id}/cancel", response_model=CancelBookingResponse)
@limiter.limit("20/minute")
async def cancel_my_booking(
    request: Request,
    booking_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Cancel a booking at least one hour before the class; the credit is refunded.

    Errors: BOOKING_NOT_FOUND, FORBIDDEN, ALREADY_CANCELLED, CLASS_IN_PAST,
    CANCELLATION_WINDOW_PASSED.
    """
    booking, refund = await cancel_booking(db, booking_id, current_user)

    background_tasks.add_task(
        send_notification,
        "booking_cancelled",
        booking.user_id,
        {"booking_id": booking.id, "balance_after": refund.balance_after},
    )
    return CancelBookingResponse(
        booking=BookingRead.model_validate(booking),
        refunded_credits=refund.credits_change,
        balance_after=refund.balance_after,
    )


@router.get("", response_model=BookingListResponse)
@limiter.limit("60/minute")
async def get_my_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    upcoming_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await list_member_bookings(
        db, current_user.id, status=status_filter, upcoming_only=upcoming_only
    )
