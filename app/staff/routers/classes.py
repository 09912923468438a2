"""Staff Classes Router - one-off classes, cancellations and location shutdown"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_current_admin, get_current_staff
from app.core.limits import limiter
from app.staff.crud.classes import (
    cancel_class_instance,
    create_class_instance,
    deactivate_location,
    delete_class_instance,
    list_class_instances,
)
from app.staff.models import User
from app.staff.schemas.classes import CascadeResult, ClassInstanceCreate, ClassInstanceRead

router = APIRouter(prefix="/staff", tags=["Staff Classes"])


@router.get("/classes", response_model=List[ClassInstanceRead])
@limiter.limit("60/minute")
async def get_classes(
    request: Request,
    start: datetime = Query(...),
    end: datetime = Query(...),
    location_id: Optional[int] = Query(None),
    coach_id: Optional[int] = Query(None),
    include_cancelled: bool = Query(False),
    staff: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_session),
):
    return await list_class_instances(
        db, start, end, location_id, coach_id, include_cancelled
    )


@router.post("/classes", response_model=ClassInstanceRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def add_class(
    request: Request,
    data: ClassInstanceCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await create_class_instance(db, data)


@router.post("/classes/{class_instance_id}/cancel", response_model=CascadeResult)
@limiter.limit("20/minute")
async def cancel_class(
    request: Request,
    class_instance_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Cancel a class; every confirmed booking is cancelled and refunded."""
    return await cancel_class_instance(db, class_instance_id)


@router.delete("/classes/{class_instance_id}", response_model=CascadeResult)
@limiter.limit("20/minute")
async def remove_class(
    request: Request,
    class_instance_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await delete_class_instance(db, class_instance_id)


@router.post("/locations/{location_id}/deactivate", response_model=CascadeResult)
@limiter.limit("5/minute")
async def close_location(
    request: Request,
    location_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Cancel all upcoming classes at a location with refunds and stop its schedules."""
    return await deactivate_location(db, location_id)
