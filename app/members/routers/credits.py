"""Member Credits Router - balance, ledger history and children profiles"""
from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_current_user
from app.core.limits import limiter
from app.members.crud import ledger
from app.members.crud.children import create_child, delete_child, list_children
from app.members.schemas.children import ChildCreate, ChildDeleteResponse, ChildRead
from app.members.schemas.credits import CreditSummary, CreditTransactionRead
from app.staff.models import User

router = APIRouter(prefix="/members", tags=["Member Credits"])


@router.get("/credits", response_model=CreditSummary)
@limiter.limit("60/minute")
async def get_my_credits(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await ledger.get_credit_summary(db, current_user.id)


@router.get("/credits/transactions", response_model=List[CreditTransactionRead])
@limiter.limit("30/minute")
async def get_my_transactions(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await ledger.list_transactions(db, current_user.id, limit)


@router.get("/children", response_model=List[ChildRead])
@limiter.limit("60/minute")
async def get_my_children(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await list_children(db, current_user.id)


@router.post("/children", response_model=ChildRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def add_child(
    request: Request,
    data: ChildCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await create_child(db, current_user.id, data)


@router.delete("/children/{child_id}", response_model=ChildDeleteResponse)
@limiter.limit("10/minute")
async def remove_child(
    request: Request,
    child_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Delete a child profile; their upcoming bookings are cancelled and refunded."""
    refunded = await delete_child(db, current_user.id, child_id)
    return ChildDeleteResponse(child_id=child_id, refunded_bookings=refunded)
