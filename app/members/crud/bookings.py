"""Member Booking CRUD - booking, cancelling and refunding class reservations"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import CANCELLATION_WINDOW_MINUTES
from app.core.database import db_operation, db_retry, TransactionManager
from app.core.exceptions import (
    AlreadyBookedError,
    AlreadyCancelledError,
    BookingNotFoundError,
    CancellationWindowPassedError,
    ClassCancelledError,
    ClassFullError,
    ClassInPastError,
    ClassNotFoundError,
    ForbiddenError,
    InvalidChildError,
    InvalidStatusError,
)
from app.core.logging_utils import log_business_event
from app.core.types import utcnow
from app.members.crud import ledger
from app.members.models import Booking, BookingStatus, Child, CreditTransaction, TransactionType
from app.members.schemas.bookings import BookingClassInfo, BookingListResponse, BookingWithClass
from app.staff.models import ClassInstance, User

logger = logging.getLogger(__name__)


async def lock_class_instance(
    session: AsyncSession, class_instance_id: int, now: datetime
) -> ClassInstance:
    """
    Take the write lock on a class instance and return a fresh copy of it.

    The touch-UPDATE is the first write of the transaction: PostgreSQL locks
    the row, SQLite takes the database RESERVED lock. Everything read after it
    is serialized against other bookings of the same class.
    """
    touched = await session.execute(
        update(ClassInstance)
        .where(ClassInstance.id == class_instance_id)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if touched.rowcount != 1:
        raise ClassNotFoundError(class_instance_id)

    result = await session.execute(
        select(ClassInstance)
        .where(ClassInstance.id == class_instance_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def count_confirmed(session: AsyncSession, class_instance_id: int) -> int:
    return await session.scalar(
        select(func.count())
        .select_from(Booking)
        .where(
            Booking.class_instance_id == class_instance_id,
            Booking.status == BookingStatus.confirmed,
        )
    )


async def _book(
    session: AsyncSession,
    user_id: int,
    class_instance_id: int,
    child_id: Optional[int],
    now: datetime,
) -> Booking:
    if child_id is not None:
        child = await session.get(Child, child_id)
        if child is None or child.parent_id != user_id:
            raise InvalidChildError(child_id)

    instance = await lock_class_instance(session, class_instance_id, now)

    if instance.is_cancelled:
        raise ClassCancelledError(class_instance_id)
    if instance.start_time <= now:
        raise ClassInPastError(class_instance_id)

    if await count_confirmed(session, class_instance_id) >= instance.capacity:
        raise ClassFullError(class_instance_id, instance.capacity)

    duplicate = await session.scalar(
        select(Booking.id).where(
            Booking.class_instance_id == class_instance_id,
            Booking.user_id == user_id,
            Booking.child_id.is_(None) if child_id is None else Booking.child_id == child_id,
            Booking.status == BookingStatus.confirmed,
        )
    )
    if duplicate is not None:
        raise AlreadyBookedError(class_instance_id)

    debit_entry = await ledger.debit(session, user_id, 1, now=now)

    booking = Booking(
        class_instance_id=class_instance_id,
        user_id=user_id,
        child_id=child_id,
        member_package_id=debit_entry.member_package_id,
        status=BookingStatus.confirmed,
        booked_at=now,
    )
    session.add(booking)
    try:
        await session.flush()
    except IntegrityError:
        # Партиальный уникальный индекс поймал параллельную запись
        raise AlreadyBookedError(class_instance_id)

    debit_entry.booking_id = booking.id
    await session.flush()
    return booking


@db_retry()
async def create_booking(
    session: AsyncSession,
    user_id: int,
    class_instance_id: int,
    child_id: Optional[int] = None,
    now: Optional[datetime] = None,
    created_by: Optional[int] = None,
) -> Booking:
    """
    Book a class for a member (or one of their children) and spend one credit.

    Validates, in order:
    - child belongs to the member
    - class exists, is not cancelled and has not started
    - confirmed bookings < capacity
    - no confirmed booking for the same member/child yet
    - a usable credit exists (soonest-expiring package first)

    Runs as a single transaction; lock conflicts are retried by db_retry.
    """
    now = now or utcnow()

    async with TransactionManager(session):
        booking = await _book(session, user_id, class_instance_id, child_id, now)

    log_business_event(
        "booking_created",
        "booking",
        booking.id,
        {
            "user_id": user_id,
            "class_instance_id": class_instance_id,
            "child_id": child_id,
            "member_package_id": booking.member_package_id,
            "created_by": created_by or user_id,
        },
    )
    return booking


async def admin_create_booking(
    session: AsyncSession,
    admin: User,
    user_id: int,
    class_instance_id: int,
    child_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """Admin books on behalf of a member. Same rules, including the credit debit."""
    if not admin.is_admin:
        raise ForbiddenError("Only admins can book on behalf of members")

    return await create_booking(
        session, user_id, class_instance_id, child_id, now=now, created_by=admin.id
    )


async def refund_booking(
    session: AsyncSession,
    booking: Booking,
    now: datetime,
    notes: Optional[str] = None,
) -> Optional[CreditTransaction]:
    """
    confirmed -> cancelled plus one credit back to the package it came from.

    The status change is a conditional UPDATE, so a booking is refunded at most
    once even when two cancellations race. Returns None when the booking was no
    longer confirmed.
    """
    changed = await session.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == BookingStatus.confirmed)
        .values(status=BookingStatus.cancelled, cancelled_at=now)
        .execution_options(synchronize_session=False)
    )
    if changed.rowcount != 1:
        return None

    await session.refresh(booking, ["status", "cancelled_at"])
    return await ledger.credit(
        session,
        booking.member_package_id,
        1,
        TransactionType.refund,
        booking_id=booking.id,
        notes=notes,
    )


@db_operation
async def get_booking(session: AsyncSession, booking_id: int, for_update: bool = False) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    booking = await session.scalar(query)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    return booking


async def cancel_booking(
    session: AsyncSession,
    booking_id: int,
    actor: User,
    now: Optional[datetime] = None,
) -> Tuple[Booking, CreditTransaction]:
    """
    Cancel a booking and refund its credit.

    Members cancel their own bookings up to CANCELLATION_WINDOW_MINUTES before
    the class starts. Admins may cancel any booking at any time.
    """
    return await _cancel(session, booking_id, actor.id, actor.is_admin, now or utcnow())


@db_retry()
async def _cancel(
    session: AsyncSession,
    booking_id: int,
    actor_id: int,
    is_admin: bool,
    now: datetime,
) -> Tuple[Booking, CreditTransaction]:
    async with TransactionManager(session):
        booking = await get_booking(session, booking_id, for_update=True)

        if booking.user_id != actor_id and not is_admin:
            raise ForbiddenError("You can only cancel your own bookings")

        if booking.status == BookingStatus.cancelled:
            raise AlreadyCancelledError(booking_id)
        if booking.status != BookingStatus.confirmed:
            raise InvalidStatusError(booking_id, booking.status.value)

        instance = booking.class_instance
        if not is_admin:
            if instance.start_time <= now:
                raise ClassInPastError(instance.id)
            if instance.start_time - now < timedelta(minutes=CANCELLATION_WINDOW_MINUTES):
                raise CancellationWindowPassedError(booking_id, CANCELLATION_WINDOW_MINUTES)

        refund = await refund_booking(
            session,
            booking,
            now,
            notes="Cancelled by admin" if is_admin and booking.user_id != actor_id else "Cancelled by member",
        )
        if refund is None:
            raise AlreadyCancelledError(booking_id)

    log_business_event(
        "booking_cancelled",
        "booking",
        booking.id,
        {
            "user_id": booking.user_id,
            "cancelled_by": actor_id,
            "member_package_id": booking.member_package_id,
            "balance_after": refund.balance_after,
        },
    )
    return booking, refund


@db_operation
async def list_member_bookings(
    session: AsyncSession,
    user_id: int,
    status: Optional[BookingStatus] = None,
    upcoming_only: bool = False,
    now: Optional[datetime] = None,
) -> BookingListResponse:
    now = now or utcnow()

    query = (
        select(Booking)
        .join(ClassInstance, Booking.class_instance_id == ClassInstance.id)
        .where(Booking.user_id == user_id)
    )
    if status is not None:
        query = query.where(Booking.status == status)
    if upcoming_only:
        query = query.where(ClassInstance.start_time > now)
    query = query.order_by(ClassInstance.start_time.asc(), Booking.id.asc())

    result = await session.execute(query)
    bookings: List[Booking] = result.scalars().all()

    items = []
    for booking in bookings:
        instance = booking.class_instance
        items.append(
            BookingWithClass(
                id=booking.id,
                class_instance_id=booking.class_instance_id,
                user_id=booking.user_id,
                child_id=booking.child_id,
                member_package_id=booking.member_package_id,
                status=booking.status,
                booked_at=booking.booked_at,
                cancelled_at=booking.cancelled_at,
                attendance_marked_at=booking.attendance_marked_at,
                class_instance=BookingClassInfo(
                    id=instance.id,
                    class_type_name=instance.class_type.name,
                    location_name=instance.location.name,
                    coach_id=instance.coach_id,
                    start_time=instance.start_time,
                    end_time=instance.end_time,
                    is_cancelled=instance.is_cancelled,
                ),
            )
        )

    return BookingListResponse(bookings=items, total=len(items))
