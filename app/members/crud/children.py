"""Member children profiles"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, db_retry, TransactionManager
from app.core.exceptions import InvalidChildError
from app.core.logging_utils import log_business_event
from app.core.types import utcnow
from app.members.crud.bookings import refund_booking
from app.members.models import Booking, BookingStatus, Child
from app.members.schemas.children import ChildCreate
from app.staff.models import ClassInstance


@db_operation
async def create_child(session: AsyncSession, parent_id: int, data: ChildCreate) -> Child:
    async with TransactionManager(session):
        child = Child(parent_id=parent_id, **data.model_dump())
        session.add(child)
        await session.flush()
    return child


@db_operation
async def list_children(session: AsyncSession, parent_id: int) -> List[Child]:
    result = await session.execute(
        select(Child).where(Child.parent_id == parent_id).order_by(Child.id)
    )
    return result.scalars().all()


@db_retry()
async def delete_child(
    session: AsyncSession,
    parent_id: int,
    child_id: int,
    now: Optional[datetime] = None,
) -> int:
    """
    Remove a child profile. Upcoming confirmed bookings for the child are
    refunded first.

    Returns:
        Number of refunded bookings
    """
    now = now or utcnow()

    async with TransactionManager(session):
        child = await session.get(Child, child_id, with_for_update=True)
        if child is None or child.parent_id != parent_id:
            raise InvalidChildError(child_id)

        result = await session.execute(
            select(Booking)
            .join(ClassInstance, Booking.class_instance_id == ClassInstance.id)
            .where(
                Booking.child_id == child_id,
                Booking.status == BookingStatus.confirmed,
                ClassInstance.start_time > now,
            )
            .order_by(Booking.id)
        )
        refunded = 0
        for booking in result.scalars().all():
            if await refund_booking(session, booking, now, notes="Child profile removed") is not None:
                refunded += 1

        await session.execute(
            delete(Child)
            .where(Child.id == child_id)
            .execution_options(synchronize_session=False)
        )

    session.expunge_all()

    log_business_event(
        "child_deleted", "child", child_id, {"parent_id": parent_id, "refunded_bookings": refunded}
    )
    return refunded
