"""Staff class CRUD - class instances, locations and the refunds they cascade into"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, db_retry, TransactionManager
from app.core.exceptions import (
    ClassCancelledError,
    ClassNotFoundError,
    NotFoundError,
    ValidationError,
)
from app.core.logging_utils import log_business_event
from app.core.types import utcnow
from app.members.crud.bookings import lock_class_instance, refund_booking
from app.members.models import Booking, BookingStatus
from app.staff.models import ClassInstance, ClassSchedule, ClassType, Location
from app.staff.schemas.classes import CascadeResult, ClassInstanceCreate

logger = logging.getLogger(__name__)


async def _refund_confirmed(
    session: AsyncSession,
    class_instance_id: int,
    now: datetime,
    notes: str,
) -> List[int]:
    """Refund every confirmed booking of one class; returns the affected user ids."""
    result = await session.execute(
        select(Booking)
        .where(
            Booking.class_instance_id == class_instance_id,
            Booking.status == BookingStatus.confirmed,
        )
        .order_by(Booking.id)
        .with_for_update()
    )
    refunded_users = []
    for booking in result.scalars().all():
        if await refund_booking(session, booking, now, notes=notes) is not None:
            refunded_users.append(booking.user_id)
    return refunded_users


@db_operation
async def get_class_instance(session: AsyncSession, class_instance_id: int) -> ClassInstance:
    instance = await session.get(ClassInstance, class_instance_id)
    if instance is None:
        raise ClassNotFoundError(class_instance_id)
    return instance


@db_operation
async def create_class_instance(
    session: AsyncSession, data: ClassInstanceCreate
) -> ClassInstance:
    """One-off class outside any recurring schedule."""
    class_type = await session.get(ClassType, data.class_type_id)
    if class_type is None:
        raise NotFoundError("Class type", data.class_type_id)
    location = await session.get(Location, data.location_id)
    if location is None or not location.is_active:
        raise NotFoundError("Location", data.location_id)

    async with TransactionManager(session):
        instance = ClassInstance(
            class_type_id=data.class_type_id,
            coach_id=data.coach_id,
            location_id=data.location_id,
            start_time=data.start_time,
            end_time=data.end_time or data.start_time + class_type.duration(),
            capacity=data.capacity or location.capacity,
        )
        session.add(instance)
        await session.flush()

    return instance


@db_retry()
async def cancel_class_instance(
    session: AsyncSession,
    class_instance_id: int,
    now: Optional[datetime] = None,
) -> CascadeResult:
    """Mark a class cancelled and refund everyone booked on it."""
    now = now or utcnow()

    async with TransactionManager(session):
        instance = await lock_class_instance(session, class_instance_id, now)
        if instance.is_cancelled:
            raise ClassCancelledError(class_instance_id)

        instance.is_cancelled = True
        refunded = await _refund_confirmed(
            session, class_instance_id, now, notes="Class cancelled"
        )
        await session.flush()

    log_business_event(
        "class_cancelled",
        "class_instance",
        class_instance_id,
        {"refunded_bookings": len(refunded)},
    )
    return CascadeResult(
        classes_affected=1, bookings_refunded=len(refunded), refunded_user_ids=refunded
    )


@db_retry()
async def delete_class_instance(
    session: AsyncSession,
    class_instance_id: int,
    now: Optional[datetime] = None,
) -> CascadeResult:
    """Refund confirmed bookings, then delete the class (its bookings go with it)."""
    now = now or utcnow()

    async with TransactionManager(session):
        await lock_class_instance(session, class_instance_id, now)
        refunded = await _refund_confirmed(
            session, class_instance_id, now, notes="Class deleted"
        )
        await session.execute(
            delete(ClassInstance)
            .where(ClassInstance.id == class_instance_id)
            .execution_options(synchronize_session=False)
        )

    session.expunge_all()

    log_business_event(
        "class_deleted",
        "class_instance",
        class_instance_id,
        {"refunded_bookings": len(refunded)},
    )
    return CascadeResult(
        classes_affected=1, bookings_refunded=len(refunded), refunded_user_ids=refunded
    )


@db_retry()
async def deactivate_location(
    session: AsyncSession,
    location_id: int,
    now: Optional[datetime] = None,
) -> CascadeResult:
    """
    Take a location out of service.

    Every future class there is cancelled with refunds, its schedules stop
    generating, and the location is flagged inactive. Past classes are kept.
    """
    now = now or utcnow()

    async with TransactionManager(session):
        location = await session.scalar(
            select(Location).where(Location.id == location_id).with_for_update()
        )
        if location is None:
            raise NotFoundError("Location", location_id)

        result = await session.execute(
            select(ClassInstance.id).where(
                ClassInstance.location_id == location_id,
                ClassInstance.start_time > now,
                ClassInstance.is_cancelled.is_(False),
            )
        )
        instance_ids = result.scalars().all()

        refunded: List[int] = []
        for instance_id in instance_ids:
            instance = await lock_class_instance(session, instance_id, now)
            instance.is_cancelled = True
            refunded.extend(
                await _refund_confirmed(
                    session, instance_id, now, notes="Location closed"
                )
            )

        schedules = await session.execute(
            update(ClassSchedule)
            .where(ClassSchedule.location_id == location_id, ClassSchedule.is_active.is_(True))
            .values(is_active=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        location.is_active = False
        await session.flush()

    log_business_event(
        "location_deactivated",
        "location",
        location_id,
        {
            "classes_cancelled": len(instance_ids),
            "bookings_refunded": len(refunded),
            "schedules_deactivated": schedules.rowcount,
        },
    )
    return CascadeResult(
        classes_affected=len(instance_ids),
        bookings_refunded=len(refunded),
        refunded_user_ids=refunded,
        schedules_deactivated=schedules.rowcount,
    )


@db_operation
async def list_class_instances(
    session: AsyncSession,
    start: datetime,
    end: datetime,
    location_id: Optional[int] = None,
    coach_id: Optional[int] = None,
    include_cancelled: bool = False,
) -> List[ClassInstance]:
    if end <= start:
        raise ValidationError("end must be after start")

    query = select(ClassInstance).where(
        ClassInstance.start_time >= start, ClassInstance.start_time < end
    )
    if location_id is not None:
        query = query.where(ClassInstance.location_id == location_id)
    if coach_id is not None:
        query = query.where(ClassInstance.coach_id == coach_id)
    if not include_cancelled:
        query = query.where(ClassInstance.is_cancelled.is_(False))

    result = await session.execute(query.order_by(ClassInstance.start_time, ClassInstance.id))
    return result.scalars().all()
