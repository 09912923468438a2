import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.core.exceptions import ValidationError
from app.staff.models import ClassInstance
from app.staff.services.schedule_generator import ScheduleGenerator, add_months, js_weekday

# Вторник, 1 января 2030, полночь UTC
GENERATED_AT = datetime(2030, 1, 1, 0, 0, tzinfo=timezone.utc)
TUESDAY = 2


async def all_instances(session):
    result = await session.execute(
        select(ClassInstance)
        .order_by(ClassInstance.start_time)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


@pytest.fixture
async def slot(factory):
    """Базовое правило: вторник 10:00"""
    coach = await factory.coach()
    location = await factory.location(capacity=30)
    class_type = await factory.class_type(duration_minutes=45)
    schedule = await factory.schedule(TUESDAY, "10:00", coach, location, class_type, capacity=12)
    return {"coach": coach, "location": location, "class_type": class_type, "schedule": schedule}


def test_add_months_clamps_to_month_end():
    assert add_months(date(2030, 1, 31), 1) == date(2030, 2, 28)
    assert add_months(date(2032, 1, 31), 1) == date(2032, 2, 29)
    assert add_months(date(2030, 11, 15), 2) == date(2031, 1, 15)
    assert add_months(date(2030, 3, 10), 12) == date(2031, 3, 10)


def test_js_weekday_starts_on_sunday():
    assert js_weekday(date(2030, 1, 6)) == 0
    assert js_weekday(date(2030, 1, 1)) == TUESDAY
    assert js_weekday(date(2030, 1, 5)) == 6


async def test_generate_expands_base_schedule(session, slot):
    result = await ScheduleGenerator(session, tz_name="UTC").generate(1, now=GENERATED_AT)

    assert result.start_date == date(2030, 1, 1)
    assert result.end_date == date(2030, 2, 1)
    assert result.created == 5

    instances = await all_instances(session)
    assert [i.start_time.day for i in instances] == [1, 8, 15, 22, 29]
    first = instances[0]
    assert first.start_time == datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert first.end_time - first.start_time == timedelta(minutes=45)
    assert first.capacity == 12
    assert first.schedule_id == slot["schedule"].id


async def test_generate_twice_is_idempotent(session, slot):
    generator = ScheduleGenerator(session, tz_name="UTC")

    first = await generator.generate(1, now=GENERATED_AT)
    before = [(i.id, i.start_time) for i in await all_instances(session)]
    second = await generator.generate(1, now=GENERATED_AT)
    after = [(i.id, i.start_time) for i in await all_instances(session)]

    assert first.created == 5
    assert second.created == 0
    assert second.skipped == 5
    assert before == after


async def test_concurrent_runs_do_not_duplicate(session_factory, session, slot):
    async def run():
        async with session_factory() as db:
            return await ScheduleGenerator(db, tz_name="UTC").generate(1, now=GENERATED_AT)

    results = await asyncio.gather(run(), run(), return_exceptions=True)

    created = sum(r.created for r in results if not isinstance(r, Exception))
    assert created == 5
    assert len(await all_instances(session)) == 5


async def test_generate_skips_occurrences_already_started(session, slot):
    after_first_class = GENERATED_AT + timedelta(hours=10, minutes=1)

    result = await ScheduleGenerator(session, tz_name="UTC").generate(1, now=after_first_class)

    assert result.created == 4
    assert (await all_instances(session))[0].start_time.day == 8


async def test_override_takes_precedence_within_its_range(session, factory, slot):
    substitute = await factory.coach()
    other_type = await factory.class_type(duration_minutes=90)
    override = await factory.schedule(
        TUESDAY,
        "10:00",
        substitute,
        slot["location"],
        other_type,
        capacity=8,
        override_start=date(2030, 1, 8),
        override_end=date(2030, 1, 15),
        base_schedule=slot["schedule"],
    )
    override_id, base_id = override.id, slot["schedule"].id
    substitute_id, base_coach_id = substitute.id, slot["coach"].id

    result = await ScheduleGenerator(session, tz_name="UTC").generate(1, now=GENERATED_AT)

    assert result.created == 5
    by_day = {i.start_time.day: i for i in await all_instances(session)}
    for day in (8, 15):
        assert by_day[day].schedule_id == override_id
        assert by_day[day].coach_id == substitute_id
        assert by_day[day].capacity == 8
        assert by_day[day].end_time - by_day[day].start_time == timedelta(minutes=90)
    for day in (1, 22, 29):
        assert by_day[day].schedule_id == base_id
        assert by_day[day].coach_id == base_coach_id


async def test_override_adopts_existing_instances(session, factory, slot):
    generator = ScheduleGenerator(session, tz_name="UTC")
    await generator.generate(1, now=GENERATED_AT)
    ids_before = {i.start_time.day: i.id for i in await all_instances(session)}

    substitute = await factory.coach()
    override = await factory.schedule(
        TUESDAY,
        "10:00",
        substitute,
        slot["location"],
        slot["class_type"],
        capacity=6,
        override_start=date(2030, 1, 8),
        override_end=date(2030, 1, 15),
    )
    override_id, substitute_id = override.id, substitute.id

    result = await generator.generate(1, now=GENERATED_AT)

    assert result.created == 0
    assert result.adopted == 2
    by_day = {i.start_time.day: i for i in await all_instances(session)}
    # Те же строки, обновлённые на месте
    assert {day: i.id for day, i in by_day.items()} == ids_before
    assert by_day[8].schedule_id == override_id
    assert by_day[8].coach_id == substitute_id
    assert by_day[8].capacity == 6

    rerun = await generator.generate(1, now=GENERATED_AT)
    assert rerun.created == 0
    assert rerun.adopted == 0


async def test_inactive_schedules_are_ignored(session, slot):
    slot["schedule"].is_active = False
    await session.commit()

    result = await ScheduleGenerator(session, tz_name="UTC").generate(1, now=GENERATED_AT)

    assert result.created == 0


async def test_local_club_time_is_converted_to_utc(session, slot):
    result = await ScheduleGenerator(session, tz_name="Asia/Tashkent").generate(1, now=GENERATED_AT)

    assert result.created == 5
    first = (await all_instances(session))[0]
    # 10:00 по Ташкенту (UTC+5) = 05:00 UTC
    assert first.start_time == datetime(2030, 1, 1, 5, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("months_ahead", [0, 13])
async def test_months_ahead_must_be_in_range(session, months_ahead):
    with pytest.raises(ValidationError):
        await ScheduleGenerator(session, tz_name="UTC").generate(months_ahead, now=GENERATED_AT)
