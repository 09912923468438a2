from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.exceptions import ClassCancelledError, DatabaseError, InvalidChildError
from app.members.crud import ledger
from app.members.crud.bookings import create_booking
from app.members.crud.children import delete_child
from app.members.models import Booking, BookingStatus, Child, CreditTransaction, MemberPackage, TransactionType
from app.staff.crud.classes import cancel_class_instance, deactivate_location, delete_class_instance
from app.staff.models import ClassInstance, ClassSchedule, Location


async def balances(session, package_ids):
    result = await session.execute(
        select(MemberPackage)
        .where(MemberPackage.id.in_(package_ids))
        .execution_options(populate_existing=True)
    )
    return {p.id: p.sessions_remaining for p in result.scalars().all()}


async def book_members(session, factory, instance_id, count, now):
    package_ids = []
    for _ in range(count):
        member = await factory.user()
        package = await factory.member_package(member, remaining=3)
        await create_booking(session, member.id, instance_id, now=now)
        package_ids.append(package.id)
    return package_ids


async def test_cancel_class_refunds_everyone(session, factory, now):
    instance = await factory.class_instance(now + timedelta(days=1))
    instance_id = instance.id
    package_ids = await book_members(session, factory, instance_id, 3, now)

    result = await cancel_class_instance(session, instance_id, now=now)

    assert result.classes_affected == 1
    assert result.bookings_refunded == 3
    assert len(result.refunded_user_ids) == 3
    assert set((await balances(session, package_ids)).values()) == {3}

    statuses = (
        await session.execute(
            select(Booking.status).where(Booking.class_instance_id == instance_id)
        )
    ).scalars().all()
    assert statuses == [BookingStatus.cancelled] * 3

    with pytest.raises(ClassCancelledError):
        await cancel_class_instance(session, instance_id, now=now)


async def test_delete_class_refunds_then_removes_bookings(session, factory, now):
    instance = await factory.class_instance(now + timedelta(days=1))
    instance_id = instance.id
    package_ids = await book_members(session, factory, instance_id, 2, now)

    result = await delete_class_instance(session, instance_id, now=now)

    assert result.bookings_refunded == 2
    assert set((await balances(session, package_ids)).values()) == {3}
    assert await session.get(ClassInstance, instance_id) is None
    assert await session.scalar(select(func.count()).select_from(Booking)) == 0

    # Журнал кредитов остаётся, ссылка на бронь обнуляется
    refunds = (
        await session.execute(
            select(CreditTransaction).where(
                CreditTransaction.transaction_type == TransactionType.refund
            )
        )
    ).scalars().all()
    assert len(refunds) == 2
    assert all(entry.booking_id is None for entry in refunds)


async def test_deactivate_location_cancels_future_classes(session, factory, now):
    location = await factory.location()
    coach = await factory.coach()
    class_type = await factory.class_type()
    past = await factory.class_instance(now - timedelta(days=1), location=location, coach=coach, class_type=class_type)
    future = await factory.class_instance(now + timedelta(days=1), location=location, coach=coach, class_type=class_type)
    other_location = await factory.class_instance(now + timedelta(days=1))
    schedule = await factory.schedule(1, "18:00", coach, location, class_type)
    location_id, past_id, future_id, other_id, schedule_id = (
        location.id, past.id, future.id, other_location.id, schedule.id
    )
    package_ids = await book_members(session, factory, future_id, 2, now)

    result = await deactivate_location(session, location_id, now=now)

    assert result.classes_affected == 1
    assert result.bookings_refunded == 2
    assert result.schedules_deactivated == 1
    assert set((await balances(session, package_ids)).values()) == {3}

    instances = {
        i.id: i
        for i in (
            await session.execute(select(ClassInstance).execution_options(populate_existing=True))
        ).scalars().all()
    }
    assert instances[future_id].is_cancelled is True
    assert instances[past_id].is_cancelled is False
    assert instances[other_id].is_cancelled is False

    location = await session.get(Location, location_id, populate_existing=True)
    schedule = await session.get(ClassSchedule, schedule_id, populate_existing=True)
    assert location.is_active is False
    assert schedule.is_active is False


async def test_delete_child_refunds_upcoming_bookings(session, factory, now):
    member = await factory.user()
    child = await factory.child(member)
    package = await factory.member_package(member, remaining=4)
    first = await factory.class_instance(now + timedelta(days=1))
    second = await factory.class_instance(now + timedelta(days=2))
    member_id, child_id, package_id = member.id, child.id, package.id

    await create_booking(session, member_id, first.id, child_id=child_id, now=now)
    await create_booking(session, member_id, second.id, child_id=child_id, now=now)
    await create_booking(session, member_id, second.id, now=now)

    refunded = await delete_child(session, member_id, child_id, now=now)

    assert refunded == 2
    assert await session.get(Child, child_id) is None
    assert (await balances(session, [package_id]))[package_id] == 3
    # Бронь самого участника не затронута
    statuses = (await session.execute(select(Booking.status))).scalars().all()
    assert statuses == [BookingStatus.confirmed]


async def test_delete_foreign_child_rejected(session, factory, now):
    parent = await factory.user()
    stranger = await factory.user()
    child = await factory.child(parent)

    with pytest.raises(InvalidChildError):
        await delete_child(session, stranger.id, child.id, now=now)


@pytest.fixture
def second_refund_fails(monkeypatch):
    """Второй возврат кредита падает посреди каскада"""
    real_credit = ledger.credit
    calls = []

    async def flaky_credit(*args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise DatabaseError("Ledger write failed")
        return await real_credit(*args, **kwargs)

    monkeypatch.setattr(ledger, "credit", flaky_credit)
    return calls


async def test_cancel_class_is_all_or_nothing(session, factory, now, second_refund_fails):
    instance = await factory.class_instance(now + timedelta(days=1))
    instance_id = instance.id
    package_ids = await book_members(session, factory, instance_id, 3, now)

    with pytest.raises(DatabaseError):
        await cancel_class_instance(session, instance_id, now=now)

    assert len(second_refund_fails) == 2
    assert set((await balances(session, package_ids)).values()) == {2}
    statuses = (
        await session.execute(
            select(Booking.status).where(Booking.class_instance_id == instance_id)
        )
    ).scalars().all()
    assert statuses == [BookingStatus.confirmed] * 3
    refunds = await session.scalar(
        select(func.count(CreditTransaction.id)).where(
            CreditTransaction.transaction_type == TransactionType.refund
        )
    )
    assert refunds == 0

    instance = await session.get(ClassInstance, instance_id, populate_existing=True)
    assert instance.is_cancelled is False


async def test_deactivate_location_is_all_or_nothing(session, factory, now, second_refund_fails):
    location = await factory.location()
    coach = await factory.coach()
    class_type = await factory.class_type()
    first = await factory.class_instance(now + timedelta(days=1), location=location, coach=coach, class_type=class_type)
    second = await factory.class_instance(now + timedelta(days=2), location=location, coach=coach, class_type=class_type)
    schedule = await factory.schedule(1, "18:00", coach, location, class_type)
    location_id, first_id, second_id, schedule_id = location.id, first.id, second.id, schedule.id
    package_ids = await book_members(session, factory, first_id, 1, now)
    package_ids += await book_members(session, factory, second_id, 1, now)

    with pytest.raises(DatabaseError):
        await deactivate_location(session, location_id, now=now)

    assert set((await balances(session, package_ids)).values()) == {2}
    statuses = (await session.execute(select(Booking.status))).scalars().all()
    assert statuses == [BookingStatus.confirmed] * 2

    instances = (
        await session.execute(select(ClassInstance).execution_options(populate_existing=True))
    ).scalars().all()
    assert [i.is_cancelled for i in instances] == [False, False]

    location = await session.get(Location, location_id, populate_existing=True)
    schedule = await session.get(ClassSchedule, schedule_id, populate_existing=True)
    assert location.is_active is True
    assert schedule.is_active is True
