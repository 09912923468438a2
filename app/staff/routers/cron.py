"""Cron Router - entry points for the external scheduler (X-Cron-Token)"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import SCHEDULE_MONTHS_AHEAD, SCHEDULE_MAX_MONTHS_AHEAD
from app.core.database import get_session
from app.core.dependencies import verify_cron_token
from app.members.crud import ledger
from app.staff.schemas.schedule import GenerateClassesResponse
from app.staff.services.schedule_generator import ScheduleGenerator

router = APIRouter(
    prefix="/cron", tags=["Cron"], dependencies=[Depends(verify_cron_token)]
)


@router.post("/generate-classes", response_model=GenerateClassesResponse)
async def cron_generate_classes(
    months_ahead: int = Query(SCHEDULE_MONTHS_AHEAD, ge=1, le=SCHEDULE_MAX_MONTHS_AHEAD),
    db: AsyncSession = Depends(get_session),
):
    result = await ScheduleGenerator(db).generate(months_ahead)
    return GenerateClassesResponse(
        created=result.created,
        adopted=result.adopted,
        skipped=result.skipped,
        start_date=result.start_date,
        end_date=result.end_date,
        message=f"Generated {result.created} classes",
    )


@router.post("/expire-packages")
async def cron_expire_packages(db: AsyncSession = Depends(get_session)):
    expired = await ledger.expire_packages(db)
    return {"expired_packages": expired}
