from datetime import timedelta

import pytest

from app.core.exceptions import (
    AlreadyCheckedInError,
    BookingMismatchError,
    ClassEndedError,
    ForbiddenError,
    InvalidDateError,
    InvalidSignatureError,
    InvalidStatusError,
    OutsideCheckinWindowError,
    TokenExpiredError,
)
from app.members.crud.bookings import cancel_booking, create_booking
from app.members.crud.checkin import get_checkin_status, issue_checkin_token
from app.members.models import Booking, BookingStatus
from app.members.schemas.checkin import CheckinToken
from app.staff.crud.attendance import mark_attendance, validate_checkin
from app.staff.models import User


@pytest.fixture
async def booked(session, factory, now):
    """Участник записан на занятие через 30 минут"""
    coach = await factory.coach()
    member = await factory.user(first_name="Anna", last_name="Petrova")
    await factory.member_package(member, remaining=3)
    instance = await factory.class_instance(now + timedelta(minutes=30), coach=coach)
    booking = await create_booking(session, member.id, instance.id, now=now)
    return {
        "coach_id": coach.id,
        "member_id": member.id,
        "instance_id": instance.id,
        "booking_id": booking.id,
    }


async def test_checkin_marks_attended_once(session, signer, booked, now):
    token = await issue_checkin_token(session, signer, booked["booking_id"], booked["member_id"], now=now)
    coach = await session.get(User, booked["coach_id"])

    result = await validate_checkin(session, signer, token, coach, now=now + timedelta(minutes=10))

    assert result.status == BookingStatus.attended
    assert result.member_name == "Anna Petrova"
    assert result.attendance_marked_at == now + timedelta(minutes=10)

    with pytest.raises(AlreadyCheckedInError):
        await validate_checkin(session, signer, token, coach, now=now + timedelta(minutes=11))


async def test_checkin_outside_window(session, factory, signer, now):
    coach = await factory.coach()
    member = await factory.user()
    await factory.member_package(member, remaining=1)
    instance = await factory.class_instance(now + timedelta(hours=3), coach=coach)
    coach_id = coach.id
    booking = await create_booking(session, member.id, instance.id, now=now)

    token = await issue_checkin_token(session, signer, booking.id, member.id, now=now)
    coach = await session.get(User, coach_id)

    with pytest.raises(OutsideCheckinWindowError):
        await validate_checkin(session, signer, token, coach, now=now)


async def test_checkin_by_other_coach_forbidden_admin_allowed(session, factory, signer, booked, now):
    other_coach = await factory.coach()
    admin = await factory.admin()
    admin_id = admin.id
    token = await issue_checkin_token(session, signer, booked["booking_id"], booked["member_id"], now=now)

    with pytest.raises(ForbiddenError):
        await validate_checkin(session, signer, token, other_coach, now=now)

    admin = await session.get(User, admin_id)
    result = await validate_checkin(session, signer, token, admin, now=now)
    assert result.status == BookingStatus.attended


async def test_member_cannot_validate(session, signer, booked, now):
    token = await issue_checkin_token(session, signer, booked["booking_id"], booked["member_id"], now=now)
    member = await session.get(User, booked["member_id"])

    with pytest.raises(ForbiddenError):
        await validate_checkin(session, signer, token, member, now=now)


async def test_checkin_token_tampering(session, signer, booked, now):
    token = await issue_checkin_token(session, signer, booked["booking_id"], booked["member_id"], now=now)
    coach = await session.get(User, booked["coach_id"])
    forged = token.model_copy(update={"booking_id": token.booking_id + 1})

    with pytest.raises(InvalidSignatureError):
        await validate_checkin(session, signer, forged, coach, now=now)


async def test_expired_token_rejected(session, signer, booked, now):
    coach = await session.get(User, booked["coach_id"])
    stale = CheckinToken(**signer.issue(booked["booking_id"], booked["member_id"], now - timedelta(minutes=181)))

    with pytest.raises(TokenExpiredError):
        await validate_checkin(session, signer, stale, coach, now=now)


async def test_correctly_signed_token_for_other_member(session, factory, signer, booked, now):
    """Подпись верна, но booking принадлежит другому участнику"""
    stranger = await factory.user()
    token = CheckinToken(**signer.issue(booked["booking_id"], stranger.id, now))
    coach = await session.get(User, booked["coach_id"])

    with pytest.raises(BookingMismatchError):
        await validate_checkin(session, signer, token, coach, now=now)


async def test_child_checkin_must_match_booking(session, factory, signer, now):
    coach = await factory.coach()
    member = await factory.user()
    child = await factory.child(member, first_name="Mila")
    await factory.member_package(member, remaining=2)
    instance = await factory.class_instance(now + timedelta(minutes=20), coach=coach)
    coach_id, member_id, child_id = coach.id, member.id, child.id
    booking = await create_booking(session, member_id, instance.id, child_id=child_id, now=now)
    booking_id = booking.id

    token = await issue_checkin_token(session, signer, booking_id, member_id, now=now)
    assert token.child_id == child_id

    without_child = token.model_copy(update={"child_id": None})
    coach = await session.get(User, coach_id)
    with pytest.raises(BookingMismatchError):
        await validate_checkin(session, signer, without_child, coach, now=now)

    coach = await session.get(User, coach_id)
    result = await validate_checkin(session, signer, token, coach, now=now)
    assert result.child_id == child_id
    assert result.member_name.startswith("Mila")


async def test_issue_token_guards(session, factory, signer, now):
    member = await factory.user()
    stranger = await factory.user()
    await factory.member_package(member, remaining=1)
    instance = await factory.class_instance(now + timedelta(hours=2))
    member_id, stranger_id = member.id, stranger.id
    booking = await create_booking(session, member_id, instance.id, now=now)
    booking_id = booking.id

    with pytest.raises(ForbiddenError):
        await issue_checkin_token(session, signer, booking_id, stranger_id, now=now)

    with pytest.raises(ClassEndedError):
        await issue_checkin_token(session, signer, booking_id, member_id, now=now + timedelta(hours=4))


async def test_checkin_status(session, signer, booked, now):
    status = await get_checkin_status(session, booked["booking_id"], booked["member_id"], now=now)

    assert status.status == BookingStatus.confirmed
    assert status.can_generate_token is True
    assert status.checkin_window_open is True
    assert status.hours_until_class == 0.5


async def test_mark_attendance_on_class_day(session, booked, now):
    coach = await session.get(User, booked["coach_id"])

    with pytest.raises(InvalidDateError):
        await mark_attendance(
            session, booked["booking_id"], coach, BookingStatus.attended, now=now + timedelta(days=1)
        )

    coach = await session.get(User, booked["coach_id"])
    result = await mark_attendance(session, booked["booking_id"], coach, BookingStatus.no_show, now=now)
    assert result.status == BookingStatus.no_show
    assert result.attendance_marked_at == now


async def test_marked_booking_is_final(session, booked, now):
    coach = await session.get(User, booked["coach_id"])
    await mark_attendance(session, booked["booking_id"], coach, BookingStatus.no_show, now=now)

    # no_show больше не меняется, даже в тот же день
    with pytest.raises(InvalidStatusError):
        await mark_attendance(
            session, booked["booking_id"], coach, BookingStatus.attended, now=now + timedelta(hours=1)
        )

    booking = await session.get(Booking, booked["booking_id"], populate_existing=True)
    assert booking.status == BookingStatus.no_show
    assert booking.attendance_marked_at == now


async def test_manual_mark_after_qr_checkin(session, signer, booked, now):
    token = await issue_checkin_token(session, signer, booked["booking_id"], booked["member_id"], now=now)
    coach = await session.get(User, booked["coach_id"])
    checked_in_at = now + timedelta(minutes=5)
    await validate_checkin(session, signer, token, coach, now=checked_in_at)

    with pytest.raises(AlreadyCheckedInError):
        await mark_attendance(
            session, booked["booking_id"], coach, BookingStatus.no_show, now=now + timedelta(minutes=6)
        )

    booking = await session.get(Booking, booked["booking_id"], populate_existing=True)
    assert booking.status == BookingStatus.attended
    assert booking.attendance_marked_at == checked_in_at

    # и наоборот: после ручной отметки QR уже не проходит
    coach = await session.get(User, booked["coach_id"])
    with pytest.raises(AlreadyCheckedInError):
        await validate_checkin(session, signer, token, coach, now=now + timedelta(minutes=7))


async def test_mark_attendance_rejects_cancelled_booking(session, factory, now):
    coach = await factory.coach()
    member = await factory.user()
    await factory.member_package(member, remaining=1)
    instance = await factory.class_instance(now + timedelta(hours=4), coach=coach)
    coach_id, member_id = coach.id, member.id
    booking = await create_booking(session, member_id, instance.id, now=now)
    booking_id = booking.id

    member = await session.get(User, member_id)
    await cancel_booking(session, booking_id, member, now=now)

    coach = await session.get(User, coach_id)
    with pytest.raises(InvalidStatusError):
        await mark_attendance(session, booking_id, coach, BookingStatus.attended, now=now)


async def test_mark_attendance_by_other_coach(session, factory, booked, now):
    other_coach = await factory.coach()

    with pytest.raises(ForbiddenError):
        await mark_attendance(session, booked["booking_id"], other_coach, BookingStatus.attended, now=now)
