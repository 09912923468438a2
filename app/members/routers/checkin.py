"""Member Check-in Router - QR tokens for confirmed bookings"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_current_user, get_checkin_signer
from app.core.limits import limiter
from app.core.signing import CheckinTokenSigner
from app.members.crud.checkin import get_checkin_status, issue_checkin_token
from app.members.schemas.checkin import CheckinStatus, CheckinToken
from app.staff.models import User

router = APIRouter(prefix="/members/checkin", tags=["Member Check-in"])


@router.post("/{booking_id}/token", response_model=CheckinToken)
@limiter.limit("30/minute")
async def generate_checkin_token(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    signer: CheckinTokenSigner = Depends(get_checkin_signer),
    db: AsyncSession = Depends(get_session),
):
    """
    Issue a signed QR payload. The coach must scan it within 3 hours.

    Errors: BOOKING_NOT_FOUND, FORBIDDEN, INVALID_STATUS, CLASS_ENDED.
    """
    return await issue_checkin_token(db, signer, booking_id, current_user.id)


@router.get("/{booking_id}/status", response_model=CheckinStatus)
@limiter.limit("60/minute")
async def checkin_status(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_checkin_status(db, booking_id, current_user.id)
