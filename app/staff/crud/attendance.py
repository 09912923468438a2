"""Staff attendance - QR check-in validation and manual marking"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import CHECKIN_WINDOW_MINUTES
from app.core.database import db_operation, TransactionManager
from app.core.exceptions import (
    AlreadyCheckedInError,
    BookingMismatchError,
    ForbiddenError,
    InvalidDateError,
    InvalidStatusError,
    OutsideCheckinWindowError,
    ValidationError,
)
from app.core.logging_utils import log_business_event
from app.core.signing import CheckinTokenSigner
from app.core.timezone_utils import same_club_day
from app.core.types import utcnow
from app.members.crud.bookings import get_booking
from app.members.models import Booking, BookingStatus, Child
from app.members.schemas.checkin import CheckinToken
from app.staff.models import User
from app.staff.schemas.attendance import AttendanceResult

logger = logging.getLogger(__name__)

MANUAL_STATUSES = (BookingStatus.attended, BookingStatus.no_show)


def _ensure_assigned(actor: User, booking: Booking):
    if not actor.is_staff:
        raise ForbiddenError("Only coaches and admins can take attendance")
    if not actor.is_admin and booking.class_instance.coach_id != actor.id:
        raise ForbiddenError("You are not the coach of this class")


async def _attendance_result(session: AsyncSession, booking: Booking) -> AttendanceResult:
    if booking.child_id is not None:
        person = await session.get(Child, booking.child_id)
    else:
        person = await session.get(User, booking.user_id)
    member_name = " ".join(p for p in (person.first_name, person.last_name) if p)

    return AttendanceResult(
        booking_id=booking.id,
        class_instance_id=booking.class_instance_id,
        user_id=booking.user_id,
        child_id=booking.child_id,
        member_name=member_name,
        status=booking.status,
        attendance_marked_at=booking.attendance_marked_at,
    )


@db_operation
async def validate_checkin(
    session: AsyncSession,
    signer: CheckinTokenSigner,
    token: CheckinToken,
    actor: User,
    now: Optional[datetime] = None,
) -> AttendanceResult:
    """
    Validate a scanned QR token and mark the booking attended.

    Checks run in this order: caller role, signature, token age, booking,
    user/child match, coach assignment, current status, check-in window.
    The confirmed -> attended transition is a conditional UPDATE, so the same
    token can only ever succeed once.
    """
    now = now or utcnow()

    if not actor.is_staff:
        raise ForbiddenError("Only coaches and admins can validate check-ins")

    signer.verify(token.booking_id, token.user_id, token.timestamp, token.signature, now)

    async with TransactionManager(session):
        booking = await get_booking(session, token.booking_id)

        if booking.user_id != token.user_id or booking.child_id != token.child_id:
            raise BookingMismatchError(booking.id)

        _ensure_assigned(actor, booking)

        if booking.status == BookingStatus.attended:
            raise AlreadyCheckedInError(booking.id)
        if booking.status != BookingStatus.confirmed:
            raise InvalidStatusError(booking.id, booking.status.value)

        instance = booking.class_instance
        window = timedelta(minutes=CHECKIN_WINDOW_MINUTES)
        if now < instance.start_time - window or now > instance.end_time + window:
            raise OutsideCheckinWindowError(CHECKIN_WINDOW_MINUTES)

        marked = await session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == BookingStatus.confirmed)
            .values(status=BookingStatus.attended, attendance_marked_at=now)
            .execution_options(synchronize_session=False)
        )
        if marked.rowcount != 1:
            # Параллельное сканирование того же кода успело раньше
            raise AlreadyCheckedInError(booking.id)

        await session.refresh(booking, ["status", "attendance_marked_at"])

    log_business_event(
        "checkin_validated",
        "booking",
        booking.id,
        {"user_id": booking.user_id, "coach_id": actor.id, "class_instance_id": booking.class_instance_id},
    )
    return await _attendance_result(session, booking)


@db_operation
async def mark_attendance(
    session: AsyncSession,
    booking_id: int,
    actor: User,
    status: BookingStatus,
    now: Optional[datetime] = None,
) -> AttendanceResult:
    """
    Coach marks attendance by hand, on the day of the class only.

    Same transition as the QR path: only a confirmed booking moves, and
    attended / no_show are final.
    """
    now = now or utcnow()

    if status not in {s.value for s in MANUAL_STATUSES}:
        raise ValidationError(
            "Status must be 'attended' or 'no_show'", {"status": str(status)}
        )
    status = BookingStatus(status)

    async with TransactionManager(session):
        booking = await get_booking(session, booking_id, for_update=True)
        _ensure_assigned(actor, booking)

        if not same_club_day(booking.class_instance.start_time, now):
            raise InvalidDateError()
        if booking.status == BookingStatus.attended:
            raise AlreadyCheckedInError(booking.id)
        if booking.status != BookingStatus.confirmed:
            raise InvalidStatusError(booking.id, booking.status.value)

        marked = await session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == BookingStatus.confirmed)
            .values(status=status, attendance_marked_at=now)
            .execution_options(synchronize_session=False)
        )
        if marked.rowcount != 1:
            raise AlreadyCheckedInError(booking.id)

        await session.refresh(booking, ["status", "attendance_marked_at"])

    log_business_event(
        "attendance_marked",
        "booking",
        booking.id,
        {"status": status.value, "coach_id": actor.id},
    )
    return await _attendance_result(session, booking)
