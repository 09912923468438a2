from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    CreditsExpiredError,
    InsufficientCreditsError,
    NoPackageFoundError,
    ValidationError,
)
from app.members.crud import ledger
from app.members.models import CreditTransaction, MemberPackage, TransactionType
from app.staff.models import LocationPackagePrice, MemberPackagePrice


async def test_debit_uses_soonest_expiring_package(session, factory, now):
    member = await factory.user()
    later = await factory.member_package(member, remaining=2, expiry=now + timedelta(days=20))
    sooner = await factory.member_package(member, remaining=1, expiry=now + timedelta(days=3))

    entry = await ledger.debit(session, member.id, now=now)
    await session.commit()

    assert entry.member_package_id == sooner.id
    assert entry.credits_change == -1
    assert entry.balance_after == 0
    assert entry.transaction_type == TransactionType.booking

    # Первый пакет пуст, следующее списание идёт из второго
    entry = await ledger.debit(session, member.id, now=now)
    await session.commit()
    assert entry.member_package_id == later.id
    assert entry.balance_after == 1


async def test_debit_tie_on_expiry_takes_older_package(session, factory, now):
    member = await factory.user()
    expiry = now + timedelta(days=10)
    first = await factory.member_package(member, remaining=3, expiry=expiry)
    await factory.member_package(member, remaining=3, expiry=expiry)

    entry = await ledger.debit(session, member.id, now=now)

    assert entry.member_package_id == first.id


async def test_debit_skips_expired_and_empty_packages(session, factory, now):
    member = await factory.user()
    await factory.member_package(member, remaining=4, expiry=now - timedelta(days=1))
    await factory.member_package(member, remaining=0, total=5, expiry=now + timedelta(days=1))
    usable = await factory.member_package(member, remaining=1, expiry=now + timedelta(days=40))

    entry = await ledger.debit(session, member.id, now=now)

    assert entry.member_package_id == usable.id


async def test_debit_with_only_expired_credits(session, factory, now):
    member = await factory.user()
    member_id = member.id
    await factory.member_package(member, remaining=3, expiry=now - timedelta(hours=1))

    with pytest.raises(CreditsExpiredError) as exc_info:
        await ledger.debit(session, member_id, now=now)

    assert exc_info.value.error_code == "CREDITS_EXPIRED"
    assert exc_info.value.details["expired_credits"] == 3


async def test_debit_without_any_credits(session, factory, now):
    member = await factory.user()
    await factory.member_package(member, remaining=0, total=5)

    with pytest.raises(InsufficientCreditsError):
        await ledger.debit(session, member.id, now=now)


async def test_credit_cannot_exceed_package_total(session, factory):
    member = await factory.user()
    package = await factory.member_package(member, remaining=5, total=5)
    package_id = package.id

    with pytest.raises(ValidationError):
        await ledger.credit(session, package_id, 1)

    await session.refresh(package)
    assert package.sessions_remaining == 5


async def test_credit_returns_to_given_package(session, factory):
    member = await factory.user()
    package = await factory.member_package(member, remaining=2, total=5)

    entry = await ledger.credit(session, package.id, 1, notes="Class cancelled")
    await session.commit()

    assert entry.credits_change == 1
    assert entry.balance_after == 3
    assert entry.transaction_type == TransactionType.refund
    await session.refresh(package)
    assert package.sessions_remaining == 3


async def test_grant_package_records_purchase(session, factory, now):
    member = await factory.user()
    catalog = await factory.catalog_package(session_count=8, expiry_days=45)

    package = await ledger.grant_package(session, member.id, catalog.id, now=now)
    await session.commit()

    assert package.sessions_total == 8
    assert package.sessions_remaining == 8
    assert package.expiry_date == now + timedelta(days=45)

    entries = (
        await session.execute(
            select(CreditTransaction).where(CreditTransaction.member_package_id == package.id)
        )
    ).scalars().all()
    assert [(e.transaction_type, e.credits_change, e.balance_after) for e in entries] == [
        (TransactionType.purchase, 8, 8)
    ]


async def test_grant_credits_goes_to_latest_expiring_package(session, factory, now):
    member = await factory.user()
    await factory.member_package(member, remaining=1, total=5, expiry=now + timedelta(days=5))
    latest = await factory.member_package(member, remaining=2, total=5, expiry=now + timedelta(days=25))

    entry = await ledger.grant_credits(session, member.id, 2, "Goodwill", now=now)
    await session.commit()

    assert entry.member_package_id == latest.id
    assert entry.transaction_type == TransactionType.refund
    assert entry.balance_after == 4
    await session.refresh(latest)
    assert latest.sessions_total == 7
    assert latest.sessions_remaining == 4


async def test_grant_credits_revives_expired_package(session, factory, now):
    member = await factory.user()
    package = await factory.member_package(
        member, remaining=0, total=5, expiry=now - timedelta(days=3), is_expired=True
    )

    await ledger.grant_credits(session, member.id, 1, now=now)
    await session.commit()

    await session.refresh(package)
    assert package.is_expired is False
    assert package.expiry_date == now + timedelta(days=30)
    assert package.sessions_remaining == 1
    assert package.sessions_total == 6


async def test_grant_credits_without_any_package(session, factory, now):
    member = await factory.user()

    with pytest.raises(NoPackageFoundError):
        await ledger.grant_credits(session, member.id, 1, now=now)


async def test_expire_packages_writes_off_leftovers_once(session, factory, now):
    member = await factory.user()
    leftover = await factory.member_package(member, remaining=3, total=5, expiry=now - timedelta(days=1))
    empty = await factory.member_package(member, remaining=0, total=5, expiry=now - timedelta(days=1))
    await factory.member_package(member, remaining=2, expiry=now + timedelta(days=1))
    leftover_id, empty_id = leftover.id, empty.id

    assert await ledger.expire_packages(session, now=now) == 2
    # Повторный прогон ничего не меняет
    assert await ledger.expire_packages(session, now=now) == 0

    packages = {
        p.id: p
        for p in (
            await session.execute(
                select(MemberPackage).execution_options(populate_existing=True)
            )
        ).scalars().all()
    }
    assert packages[leftover_id].is_expired is True
    assert packages[empty_id].is_expired is True

    entries = (
        await session.execute(
            select(CreditTransaction).where(
                CreditTransaction.transaction_type == TransactionType.expiry
            )
        )
    ).scalars().all()
    assert [(e.member_package_id, e.credits_change, e.balance_after) for e in entries] == [
        (leftover_id, -3, 0)
    ]


async def test_credit_summary_counts_only_usable_packages(session, factory, now):
    member = await factory.user()
    await factory.member_package(member, remaining=2, expiry=now + timedelta(days=10))
    await factory.member_package(member, remaining=3, expiry=now + timedelta(days=3))
    await factory.member_package(member, remaining=4, expiry=now - timedelta(days=1))

    summary = await ledger.get_credit_summary(session, member.id, now=now)

    assert summary.available_credits == 5
    assert summary.expired_credits == 4
    assert summary.next_expiry == now + timedelta(days=3)
    assert len(summary.packages) == 2


async def test_package_price_resolution_order(session, factory):
    member = await factory.user()
    other_member = await factory.user()
    location = await factory.location()
    catalog = await factory.catalog_package(price="100.00")

    session.add(LocationPackagePrice(package_id=catalog.id, location_id=location.id, price=Decimal("90.00")))
    session.add(MemberPackagePrice(package_id=catalog.id, user_id=member.id, price=Decimal("75.00")))
    await session.commit()

    assert await ledger.resolve_package_price(session, catalog.id) == Decimal("100.00")
    assert await ledger.resolve_package_price(
        session, catalog.id, location_id=location.id
    ) == Decimal("90.00")
    assert await ledger.resolve_package_price(
        session, catalog.id, user_id=member.id, location_id=location.id
    ) == Decimal("75.00")
    assert await ledger.resolve_package_price(
        session, catalog.id, user_id=other_member.id, location_id=location.id
    ) == Decimal("90.00")
