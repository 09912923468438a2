"""Staff Credits Router - purchases, manual grants and pricing"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session, TransactionManager
from app.core.dependencies import get_current_admin
from app.core.limits import limiter
from app.core.logging_utils import log_business_event
from app.members.crud import ledger
from app.members.schemas.credits import (
    CreditSummary,
    CreditTransactionRead,
    GrantCreditsRequest,
    GrantPackageRequest,
    MemberPackageRead,
    PackagePriceResponse,
)
from app.staff.models import User

router = APIRouter(prefix="/staff", tags=["Staff Credits"])


@router.post("/packages/grant", response_model=MemberPackageRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def grant_member_package(
    request: Request,
    data: GrantPackageRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Issue a catalog package to a member after their payment was approved."""
    async with TransactionManager(db):
        package = await ledger.grant_package(db, data.user_id, data.package_id, notes=data.notes)

    log_business_event(
        "package_purchased",
        "member_package",
        package.id,
        {"user_id": data.user_id, "package_id": data.package_id, "approved_by": admin.id},
    )
    return package


@router.post("/credits/grant", response_model=CreditTransactionRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def grant_member_credits(
    request: Request,
    data: GrantCreditsRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    async with TransactionManager(db):
        entry = await ledger.grant_credits(db, data.user_id, data.amount, data.reason)

    log_business_event(
        "credits_granted",
        "member_package",
        entry.member_package_id,
        {"user_id": data.user_id, "amount": data.amount, "granted_by": admin.id},
    )
    return entry


@router.get("/members/{user_id}/credits", response_model=CreditSummary)
@limiter.limit("60/minute")
async def get_member_credits(
    request: Request,
    user_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await ledger.get_credit_summary(db, user_id)


@router.get("/members/{user_id}/credits/transactions", response_model=List[CreditTransactionRead])
@limiter.limit("30/minute")
async def get_member_transactions(
    request: Request,
    user_id: int,
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await ledger.list_transactions(db, user_id, limit)


@router.get("/packages/{package_id}/price", response_model=PackagePriceResponse)
@limiter.limit("60/minute")
async def get_package_price(
    request: Request,
    package_id: int,
    user_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    price = await ledger.resolve_package_price(db, package_id, user_id, location_id)
    return PackagePriceResponse(
        package_id=package_id, user_id=user_id, location_id=location_id, price=float(price)
    )


@router.post("/credits/expire")
@limiter.limit("5/minute")
async def run_expiry_sweep(
    request: Request,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    expired = await ledger.expire_packages(db)
    return {"expired_packages": expired}
