"""Staff Schedule Router - recurring schedules and class generation"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_current_admin
from app.core.limits import limiter
from app.staff.crud.schedules import (
    create_override,
    create_schedule,
    deactivate_schedule,
    list_schedules,
)
from app.staff.models import User
from app.staff.schemas.schedule import (
    GenerateClassesRequest,
    GenerateClassesResponse,
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleOverrideCreate,
    ScheduleRead,
)
from app.staff.services.schedule_generator import ScheduleGenerator

router = APIRouter(prefix="/staff/schedules", tags=["Staff Schedules"])


@router.get("", response_model=ScheduleListResponse)
@limiter.limit("30/minute")
async def get_schedules(
    request: Request,
    location_id: Optional[int] = Query(None),
    include_inactive: bool = Query(False),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    schedules = await list_schedules(db, location_id, include_inactive)
    return ScheduleListResponse(
        schedules=[ScheduleRead.model_validate(s) for s in schedules],
        total=len(schedules),
    )


@router.post("", response_model=ScheduleRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def add_schedule(
    request: Request,
    data: ScheduleCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await create_schedule(db, data)


@router.post("/overrides", response_model=ScheduleRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def add_schedule_override(
    request: Request,
    data: ScheduleOverrideCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Temporarily replace a weekly slot (coach, class type, capacity) for a date range."""
    return await create_override(db, data)


@router.post("/{schedule_id}/deactivate", response_model=ScheduleRead)
@limiter.limit("20/minute")
async def disable_schedule(
    request: Request,
    schedule_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await deactivate_schedule(db, schedule_id)


@router.post("/generate", response_model=GenerateClassesResponse)
@limiter.limit("5/minute")
async def generate_classes(
    request: Request,
    data: GenerateClassesRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Expand active schedules into classes from today through today + months_ahead.

    Safe to call repeatedly: existing classes are skipped.
    """
    result = await ScheduleGenerator(db).generate(data.months_ahead)
    return GenerateClassesResponse(
        created=result.created,
        adopted=result.adopted,
        skipped=result.skipped,
        start_date=result.start_date,
        end_date=result.end_date,
        message=f"Generated {result.created} classes, updated {result.adopted} for overrides",
    )
