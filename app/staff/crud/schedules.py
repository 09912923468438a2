"""Staff schedule CRUD - recurring weekly rules and their date-ranged overrides"""
from typing import List, Optional

from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, TransactionManager
from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging_utils import log_business_event
from app.staff.models import ClassSchedule, ClassType, Location, User
from app.staff.schemas.schedule import ScheduleCreate, ScheduleOverrideCreate


async def _validate_references(session: AsyncSession, data: ScheduleCreate):
    class_type = await session.get(ClassType, data.class_type_id)
    if class_type is None or not class_type.is_active:
        raise NotFoundError("Class type", data.class_type_id)

    location = await session.get(Location, data.location_id)
    if location is None or not location.is_active:
        raise NotFoundError("Location", data.location_id)

    coach = await session.get(User, data.coach_id)
    if coach is None or not coach.is_staff:
        raise ValidationError("Assigned coach must be a coach or admin", {"coach_id": data.coach_id})

    if data.capacity > location.capacity:
        raise ValidationError(
            "Class capacity exceeds location capacity",
            {"capacity": data.capacity, "location_capacity": location.capacity},
        )


@db_operation
async def create_schedule(session: AsyncSession, data: ScheduleCreate) -> ClassSchedule:
    await _validate_references(session, data)

    async with TransactionManager(session):
        schedule = ClassSchedule(**data.model_dump(), is_override=False)
        session.add(schedule)
        await session.flush()

    log_business_event("schedule_created", "class_schedule", schedule.id, data.model_dump())
    return schedule


@db_operation
async def create_override(session: AsyncSession, data: ScheduleOverrideCreate) -> ClassSchedule:
    """
    Add a date-ranged override. While it is in effect, base rules on the same
    (location, day_of_week, start_time) stop generating classes.
    """
    await _validate_references(session, data)

    if data.base_schedule_id is not None:
        base = await session.get(ClassSchedule, data.base_schedule_id)
        if base is None:
            raise NotFoundError("Schedule", data.base_schedule_id)
        if base.is_override:
            raise ValidationError("base_schedule_id must point to a base schedule")

    async with TransactionManager(session):
        schedule = ClassSchedule(**data.model_dump(), is_override=True)
        session.add(schedule)
        await session.flush()

    log_business_event(
        "schedule_override_created",
        "class_schedule",
        schedule.id,
        {
            "location_id": data.location_id,
            "day_of_week": data.day_of_week,
            "start_time": data.start_time,
            "from": data.override_start_date.isoformat(),
            "to": data.override_end_date.isoformat(),
        },
    )
    return schedule


@db_operation
async def deactivate_schedule(session: AsyncSession, schedule_id: int) -> ClassSchedule:
    """Stop generating from a rule. Classes already generated stay as they are."""
    async with TransactionManager(session):
        schedule = await session.get(ClassSchedule, schedule_id, with_for_update=True)
        if schedule is None:
            raise NotFoundError("Schedule", schedule_id)
        schedule.is_active = False
        await session.flush()

    log_business_event("schedule_deactivated", "class_schedule", schedule_id)
    return schedule


@db_operation
async def list_schedules(
    session: AsyncSession,
    location_id: Optional[int] = None,
    include_inactive: bool = False,
) -> List[ClassSchedule]:
    query = select(ClassSchedule)
    if location_id is not None:
        query = query.where(ClassSchedule.location_id == location_id)
    if not include_inactive:
        query = query.where(ClassSchedule.is_active.is_(True))

    result = await session.execute(
        query.order_by(
            ClassSchedule.is_override,
            ClassSchedule.day_of_week,
            ClassSchedule.start_time,
            ClassSchedule.id,
        )
    )
    return result.scalars().all()
