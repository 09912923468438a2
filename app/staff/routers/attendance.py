"""Staff Attendance Router - QR check-in, manual attendance, admin bookings"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_checkin_signer, get_current_admin, get_current_user
from app.core.limits import limiter
from app.core.signing import CheckinTokenSigner
from app.members.crud.bookings import admin_create_booking, cancel_booking
from app.members.schemas.bookings import (
    AdminBookingCreate,
    BookingRead,
    CancelBookingResponse,
)
from app.members.schemas.checkin import CheckinToken
from app.staff.crud.attendance import mark_attendance, validate_checkin
from app.staff.models import User
from app.staff.schemas.attendance import AttendanceResult, MarkAttendanceRequest

router = APIRouter(prefix="/staff", tags=["Staff Attendance"])


@router.post("/checkin/validate", response_model=AttendanceResult)
@limiter.limit("120/minute")
async def validate_qr_checkin(
    request: Request,
    token: CheckinToken,
    current_user: User = Depends(get_current_user),
    signer: CheckinTokenSigner = Depends(get_checkin_signer),
    db: AsyncSession = Depends(get_session),
):
    """
    Validate a scanned QR code and mark the booking attended.

    Errors: FORBIDDEN, INVALID_SIGNATURE, TOKEN_EXPIRED, INVALID_TOKEN,
    BOOKING_NOT_FOUND, BOOKING_MISMATCH, ALREADY_CHECKED_IN, INVALID_STATUS,
    OUTSIDE_CHECKIN_WINDOW.
    """
    return await validate_checkin(db, signer, token, current_user)


@router.post("/bookings/{booking_id}/attendance", response_model=AttendanceResult)
@limiter.limit("120/minute")
async def mark_booking_attendance(
    request: Request,
    booking_id: int,
    data: MarkAttendanceRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Mark a confirmed booking on the class day. Errors: FORBIDDEN, INVALID_DATE, INVALID_STATUS."""
    return await mark_attendance(db, booking_id, current_user, data.status)


@router.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def book_for_member(
    request: Request,
    data: AdminBookingCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await admin_create_booking(
        db, admin, data.user_id, data.class_instance_id, data.child_id
    )


@router.post("/bookings/{booking_id}/cancel", response_model=CancelBookingResponse)
@limiter.limit("30/minute")
async def cancel_member_booking(
    request: Request,
    booking_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Admin cancellation: no time window, credit is always refunded."""
    booking, refund = await cancel_booking(db, booking_id, admin)
    return CancelBookingResponse(
        booking=BookingRead.model_validate(booking),
        refunded_credits=refund.credits_change,
        balance_after=refund.balance_after,
    )
