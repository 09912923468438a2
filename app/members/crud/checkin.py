"""Member check-in - issuing signed QR tokens for confirmed bookings"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import CHECKIN_WINDOW_MINUTES
from app.core.database import db_operation
from app.core.exceptions import ClassEndedError, ForbiddenError, InvalidStatusError
from app.core.logging_utils import log_business_event
from app.core.signing import CheckinTokenSigner
from app.core.types import utcnow
from app.members.crud.bookings import get_booking
from app.members.models import BookingStatus
from app.members.schemas.checkin import CheckinStatus, CheckinToken


@db_operation
async def issue_checkin_token(
    session: AsyncSession,
    signer: CheckinTokenSigner,
    booking_id: int,
    user_id: int,
    now: Optional[datetime] = None,
) -> CheckinToken:
    """
    Sign a fresh QR token for the member's own confirmed booking.

    Tokens can be issued any time before the class ends; the check-in window
    is enforced when the coach scans it.
    """
    now = now or utcnow()

    booking = await get_booking(session, booking_id)
    if booking.user_id != user_id:
        raise ForbiddenError("You can only check in with your own bookings")
    if booking.status != BookingStatus.confirmed:
        raise InvalidStatusError(booking_id, booking.status.value)
    if booking.class_instance.end_time < now:
        raise ClassEndedError(booking.class_instance_id)

    payload = signer.issue(booking.id, booking.user_id, now)
    log_business_event(
        "checkin_token_issued", "booking", booking.id, {"user_id": user_id}
    )
    return CheckinToken(child_id=booking.child_id, **payload)


@db_operation
async def get_checkin_status(
    session: AsyncSession,
    booking_id: int,
    user_id: int,
    now: Optional[datetime] = None,
) -> CheckinStatus:
    now = now or utcnow()

    booking = await get_booking(session, booking_id)
    if booking.user_id != user_id:
        raise ForbiddenError("You can only view your own bookings")

    instance = booking.class_instance
    window = timedelta(minutes=CHECKIN_WINDOW_MINUTES)
    is_confirmed = booking.status == BookingStatus.confirmed

    return CheckinStatus(
        booking_id=booking.id,
        status=booking.status,
        can_generate_token=is_confirmed and instance.end_time >= now,
        checkin_window_open=(
            is_confirmed and instance.start_time - window <= now <= instance.end_time + window
        ),
        hours_until_class=round((instance.start_time - now).total_seconds() / 3600, 2),
        class_start=instance.start_time,
        class_end=instance.end_time,
        attendance_marked_at=booking.attendance_marked_at,
    )
