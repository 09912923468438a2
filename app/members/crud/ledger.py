"""Credit ledger - member session credits across packages with expiry

Every change to MemberPackage.sessions_remaining goes through this module and
is paired with exactly one CreditTransaction in the same flush. Functions here
never commit: callers wrap them in TransactionManager.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, or_, func, update
from sqlalchemy.future import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import EXPIRED_GRANT_EXTENSION_DAYS
from app.core.database import db_operation, TransactionManager
from app.core.exceptions import (
    CreditsExpiredError,
    InsufficientCreditsError,
    NoPackageFoundError,
    NotFoundError,
    ValidationError,
)
from app.core.logging_utils import log_business_event
from app.core.types import utcnow
from app.members.models import MemberPackage, CreditTransaction, TransactionType
from app.members.schemas.credits import CreditSummary, MemberPackageRead
from app.staff.models import SessionPackage, LocationPackagePrice, MemberPackagePrice

logger = logging.getLogger(__name__)


def _usable_filter(user_id: int, now: datetime):
    return and_(
        MemberPackage.user_id == user_id,
        MemberPackage.is_expired.is_(False),
        MemberPackage.expiry_date >= now,
        MemberPackage.sessions_remaining > 0,
    )


def _expired_leftover_filter(user_id: int, now: datetime):
    return and_(
        MemberPackage.user_id == user_id,
        MemberPackage.sessions_remaining > 0,
        or_(MemberPackage.is_expired.is_(True), MemberPackage.expiry_date < now),
    )


async def _append_transaction(
    session: AsyncSession,
    package: MemberPackage,
    change: int,
    transaction_type: TransactionType,
    booking_id: Optional[int] = None,
    notes: Optional[str] = None,
    balance_after: Optional[int] = None,
) -> CreditTransaction:
    entry = CreditTransaction(
        user_id=package.user_id,
        member_package_id=package.id,
        booking_id=booking_id,
        credits_change=change,
        balance_after=(
            package.sessions_remaining if balance_after is None else balance_after
        ),
        transaction_type=transaction_type,
        notes=notes,
        created_at=utcnow(),
    )
    session.add(entry)
    await session.flush()
    return entry


@db_operation
async def debit(
    session: AsyncSession,
    user_id: int,
    amount: int = 1,
    now: Optional[datetime] = None,
    booking_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> CreditTransaction:
    """
    Take `amount` credits from the member's usable package that expires first.

    The decrement is a conditional UPDATE, so two debits racing for the last
    credit of a package cannot both succeed; the loser moves on to the next
    package in expiry order.

    Returns:
        The booking-type CreditTransaction; its member_package_id names the
        package the credits were drawn from.

    Raises:
        CreditsExpiredError: only expired packages still hold credits
        InsufficientCreditsError: nothing to draw from
    """
    if amount < 1:
        raise ValidationError("Debit amount must be positive", {"amount": amount})

    now = now or utcnow()

    result = await session.execute(
        select(MemberPackage)
        .where(_usable_filter(user_id, now), MemberPackage.sessions_remaining >= amount)
        .order_by(MemberPackage.expiry_date.asc(), MemberPackage.id.asc())
        .with_for_update()
    )
    candidates = result.scalars().all()

    for package in candidates:
        decremented = await session.execute(
            update(MemberPackage)
            .where(
                MemberPackage.id == package.id,
                MemberPackage.sessions_remaining >= amount,
            )
            .values(sessions_remaining=MemberPackage.sessions_remaining - amount)
            .execution_options(synchronize_session=False)
        )
        if decremented.rowcount != 1:
            continue

        await session.refresh(package, ["sessions_remaining"])
        return await _append_transaction(
            session,
            package,
            -amount,
            TransactionType.booking,
            booking_id=booking_id,
            notes=notes,
        )

    expired_credits = await session.scalar(
        select(func.coalesce(func.sum(MemberPackage.sessions_remaining), 0)).where(
            _expired_leftover_filter(user_id, now)
        )
    )
    if expired_credits:
        raise CreditsExpiredError(user_id, int(expired_credits))

    raise InsufficientCreditsError(user_id)


@db_operation
async def credit(
    session: AsyncSession,
    member_package_id: int,
    amount: int,
    reason: TransactionType = TransactionType.refund,
    booking_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> CreditTransaction:
    """
    Return `amount` credits to a specific package.

    Refunds go back to the package the booking drew from even if it has
    expired since; the next expiry sweep settles them.
    """
    if amount < 1:
        raise ValidationError("Credit amount must be positive", {"amount": amount})

    incremented = await session.execute(
        update(MemberPackage)
        .where(
            MemberPackage.id == member_package_id,
            MemberPackage.sessions_remaining + amount <= MemberPackage.sessions_total,
        )
        .values(sessions_remaining=MemberPackage.sessions_remaining + amount)
        .execution_options(synchronize_session=False)
    )

    package = await session.get(MemberPackage, member_package_id)
    if package is None:
        raise NotFoundError("Member package", member_package_id)
    if incremented.rowcount != 1:
        raise ValidationError(
            "Credit would exceed the package total",
            {"member_package_id": member_package_id, "amount": amount},
        )

    await session.refresh(package, ["sessions_remaining"])
    return await _append_transaction(
        session, package, amount, reason, booking_id=booking_id, notes=notes
    )


@db_operation
async def grant_package(
    session: AsyncSession,
    user_id: int,
    package_id: int,
    now: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> MemberPackage:
    """Issue a purchased catalog package to a member (approved payment)."""
    now = now or utcnow()

    catalog_item = await session.get(SessionPackage, package_id)
    if catalog_item is None or not catalog_item.is_active:
        raise NotFoundError("Session package", package_id)

    package = MemberPackage(
        user_id=user_id,
        package_id=catalog_item.id,
        sessions_total=catalog_item.session_count,
        sessions_remaining=catalog_item.session_count,
        purchase_date=now,
        expiry_date=now + timedelta(days=catalog_item.expiry_days),
        is_expired=False,
    )
    session.add(package)
    await session.flush()

    await _append_transaction(
        session,
        package,
        catalog_item.session_count,
        TransactionType.purchase,
        notes=notes or f"Purchased {catalog_item.name}",
    )
    return package


@db_operation
async def grant_credits(
    session: AsyncSession,
    user_id: int,
    amount: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CreditTransaction:
    """
    Admin manual credit grant.

    Goes to the latest-expiring active package, otherwise to the most recently
    purchased one. Both total and remaining grow so the remaining <= total
    check still holds. An expired target is revived for another
    EXPIRED_GRANT_EXTENSION_DAYS days.
    """
    if amount < 1:
        raise ValidationError("Granted amount must be positive", {"amount": amount})

    now = now or utcnow()

    target = await session.scalar(
        select(MemberPackage)
        .where(
            MemberPackage.user_id == user_id,
            MemberPackage.is_expired.is_(False),
            MemberPackage.expiry_date >= now,
        )
        .order_by(MemberPackage.expiry_date.desc(), MemberPackage.id.desc())
        .limit(1)
        .with_for_update()
    )
    if target is None:
        target = await session.scalar(
            select(MemberPackage)
            .where(MemberPackage.user_id == user_id)
            .order_by(MemberPackage.purchase_date.desc(), MemberPackage.id.desc())
            .limit(1)
            .with_for_update()
        )
    if target is None:
        raise NoPackageFoundError(user_id)

    target.sessions_total += amount
    target.sessions_remaining += amount
    if target.is_expired or target.expiry_date < now:
        target.is_expired = False
        target.expiry_date = now + timedelta(days=EXPIRED_GRANT_EXTENSION_DAYS)
    await session.flush()

    return await _append_transaction(
        session,
        target,
        amount,
        TransactionType.refund,
        notes=reason or "Manual credit grant",
    )


async def expire_packages(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Periodic sweep: flag packages past expiry_date.

    Leftover credits are written off with an `expiry` entry (balance_after=0);
    sessions_remaining itself is kept for reporting. Each package is settled in
    its own transaction. Running the sweep again changes nothing.

    Returns:
        Number of packages flagged in this run
    """
    now = now or utcnow()

    result = await session.execute(
        select(MemberPackage.id).where(
            MemberPackage.is_expired.is_(False),
            MemberPackage.expiry_date < now,
        )
    )
    package_ids = result.scalars().all()
    await session.rollback()

    expired = 0
    for package_id in package_ids:
        try:
            async with TransactionManager(session):
                package = await session.scalar(
                    select(MemberPackage)
                    .where(
                        MemberPackage.id == package_id,
                        MemberPackage.is_expired.is_(False),
                    )
                    .with_for_update()
                )
                if package is None:
                    continue

                package.is_expired = True
                if package.sessions_remaining > 0:
                    await _append_transaction(
                        session,
                        package,
                        -package.sessions_remaining,
                        TransactionType.expiry,
                        notes="Package expired",
                        balance_after=0,
                    )
                await session.flush()
            expired += 1
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to expire member package {package_id}: {str(e)}",
                extra={"member_package_id": package_id},
            )

    if package_ids:
        log_business_event(
            "packages_expired",
            "member_package",
            0,
            {"expired": expired, "candidates": len(package_ids)},
        )
    return expired


@db_operation
async def find_expiring_packages(
    session: AsyncSession, within_days: int, now: Optional[datetime] = None
) -> List[MemberPackage]:
    """Active packages with credits left that expire within `within_days`."""
    now = now or utcnow()
    result = await session.execute(
        select(MemberPackage)
        .where(
            MemberPackage.is_expired.is_(False),
            MemberPackage.sessions_remaining > 0,
            MemberPackage.expiry_date >= now,
            MemberPackage.expiry_date <= now + timedelta(days=within_days),
        )
        .order_by(MemberPackage.expiry_date.asc())
    )
    return result.scalars().all()


@db_operation
async def get_credit_summary(
    session: AsyncSession, user_id: int, now: Optional[datetime] = None
) -> CreditSummary:
    now = now or utcnow()

    result = await session.execute(
        select(MemberPackage)
        .where(_usable_filter(user_id, now))
        .order_by(MemberPackage.expiry_date.asc(), MemberPackage.id.asc())
    )
    packages = result.scalars().all()

    expired_credits = await session.scalar(
        select(func.coalesce(func.sum(MemberPackage.sessions_remaining), 0)).where(
            _expired_leftover_filter(user_id, now)
        )
    )

    return CreditSummary(
        user_id=user_id,
        available_credits=sum(p.sessions_remaining for p in packages),
        expired_credits=int(expired_credits or 0),
        next_expiry=packages[0].expiry_date if packages else None,
        packages=[MemberPackageRead.model_validate(p) for p in packages],
    )


@db_operation
async def list_transactions(
    session: AsyncSession, user_id: int, limit: int = 50
) -> List[CreditTransaction]:
    result = await session.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .limit(limit)
    )
    return result.scalars().all()


@db_operation
async def resolve_package_price(
    session: AsyncSession,
    package_id: int,
    user_id: Optional[int] = None,
    location_id: Optional[int] = None,
) -> Decimal:
    """Member override > location override > catalog price."""
    catalog_item = await session.get(SessionPackage, package_id)
    if catalog_item is None:
        raise NotFoundError("Session package", package_id)

    if user_id is not None:
        member_price = await session.scalar(
            select(MemberPackagePrice.price).where(
                MemberPackagePrice.package_id == package_id,
                MemberPackagePrice.user_id == user_id,
                MemberPackagePrice.is_active.is_(True),
            )
        )
        if member_price is not None:
            return member_price

    if location_id is not None:
        location_price = await session.scalar(
            select(LocationPackagePrice.price).where(
                LocationPackagePrice.package_id == package_id,
                LocationPackagePrice.location_id == location_id,
                LocationPackagePrice.is_active.is_(True),
            )
        )
        if location_price is not None:
            return location_price

    return catalog_item.price
