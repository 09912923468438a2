import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.config import SCHEDULE_MAX_MONTHS_AHEAD
from app.core.database import TransactionManager
from app.core.exceptions import ValidationError
from app.core.logging_utils import log_business_event
from app.core.timezone_utils import club_today, local_to_utc, parse_hhmm
from app.core.types import utcnow
from app.staff.models import ClassInstance, ClassSchedule

logger = logging.getLogger(__name__)

# Строк в одном INSERT; держим число параметров ниже лимита SQLite
INSERT_CHUNK_SIZE = 100

SlotKey = Tuple[int, int]  # (location_id, минута от эпохи)


@dataclass
class GenerationResult:
    created: int
    adopted: int
    skipped: int
    start_date: date
    end_date: date


def add_months(day: date, months: int) -> date:
    """Тот же день через N календарных месяцев (31 января + 1 = 28/29 февраля)"""
    year, month_index = divmod(day.month - 1 + months, 12)
    year += day.year
    month = month_index + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def js_weekday(day: date) -> int:
    """0 = воскресенье ... 6 = суббота"""
    return (day.weekday() + 1) % 7


def minute_key(moment: datetime) -> int:
    return int(moment.timestamp()) // 60


def daterange(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class ScheduleGenerator:
    """
    Разворачивает активные еженедельные правила в конкретные занятия на
    горизонт от сегодняшнего дня (по часам клуба) до +N календарных месяцев.

    Повторный запуск ничего не меняет: уже существующие занятия пропускаются,
    а вставка идёт через ON CONFLICT DO NOTHING по (location_id, start_time),
    так что параллельные запуски (cron + админ) сходятся к одному состоянию.
    """

    def __init__(self, session: AsyncSession, tz_name: Optional[str] = None):
        self.session = session
        self.tz_name = tz_name

    async def generate(
        self, months_ahead: int, now: Optional[datetime] = None
    ) -> GenerationResult:
        if not 1 <= months_ahead <= SCHEDULE_MAX_MONTHS_AHEAD:
            raise ValidationError(
                f"months_ahead must be between 1 and {SCHEDULE_MAX_MONTHS_AHEAD}",
                {"months_ahead": months_ahead},
            )

        now = now or utcnow()
        today = club_today(now, self.tz_name)
        horizon_end = add_months(today, months_ahead)

        async with TransactionManager(self.session):
            schedules = await self._get_active_schedules()
            base = [s for s in schedules if not s.is_override]
            overrides = [s for s in schedules if s.is_override]

            await self._load_existing(today, horizon_end)

            pending: List[dict] = []
            skipped = self._expand_base(base, overrides, today, horizon_end, now, pending)
            adopted, override_skipped = self._expand_overrides(
                overrides, today, horizon_end, now, pending
            )
            skipped += override_skipped

            created = await self._insert(pending)
            # Проиграли гонку параллельному запуску - это тоже пропуск
            skipped += len(pending) - created

        result = GenerationResult(
            created=created,
            adopted=adopted,
            skipped=skipped,
            start_date=today,
            end_date=horizon_end,
        )
        log_business_event(
            "classes_generated",
            "class_schedule",
            0,
            {
                "months_ahead": months_ahead,
                "created": created,
                "adopted": adopted,
                "skipped": skipped,
                "schedules": len(schedules),
            },
        )
        return result

    async def _get_active_schedules(self) -> List[ClassSchedule]:
        result = await self.session.execute(
            select(ClassSchedule)
            .where(ClassSchedule.is_active.is_(True))
            .order_by(ClassSchedule.id)
        )
        return result.scalars().all()

    async def _load_existing(self, start: date, end: date):
        """Индексы существующих занятий: по слоту (локация, минута) и по правилу"""
        window_start = local_to_utc(start, parse_hhmm("00:00"), self.tz_name) - timedelta(minutes=1)
        window_end = local_to_utc(end + timedelta(days=1), parse_hhmm("00:00"), self.tz_name) + timedelta(minutes=1)

        result = await self.session.execute(
            select(ClassInstance).where(
                ClassInstance.start_time >= window_start,
                ClassInstance.start_time <= window_end,
            )
        )
        self.by_slot: Dict[SlotKey, ClassInstance] = {}
        self.by_schedule: Dict[int, Set[int]] = {}
        self.pending_slots: Set[SlotKey] = set()

        for instance in result.scalars().all():
            key = minute_key(instance.start_time)
            self.by_slot[(instance.location_id, key)] = instance
            if instance.schedule_id is not None:
                self.by_schedule.setdefault(instance.schedule_id, set()).add(key)

    def _already_generated(self, schedule: ClassSchedule, key: int) -> bool:
        """Есть ли у правила занятие в пределах ±1 минуты"""
        keys = self.by_schedule.get(schedule.id, set())
        return any(k in keys for k in (key - 1, key, key + 1))

    def _find_slot(self, location_id: int, key: int) -> Optional[ClassInstance]:
        for k in (key, key - 1, key + 1):
            instance = self.by_slot.get((location_id, k))
            if instance is not None:
                return instance
        return None

    def _slot_taken(self, location_id: int, key: int) -> bool:
        return self._find_slot(location_id, key) is not None or any(
            (location_id, k) in self.pending_slots for k in (key - 1, key, key + 1)
        )

    def _occurrence(self, schedule: ClassSchedule, day: date) -> Tuple[datetime, datetime]:
        start = local_to_utc(day, parse_hhmm(schedule.start_time), self.tz_name)
        return start, start + timedelta(minutes=schedule.class_type.duration_minutes)

    def _queue(self, schedule: ClassSchedule, start: datetime, end: datetime, now: datetime, pending: List[dict]):
        key = minute_key(start)
        self.pending_slots.add((schedule.location_id, key))
        self.by_schedule.setdefault(schedule.id, set()).add(key)
        pending.append(
            {
                "class_type_id": schedule.class_type_id,
                "coach_id": schedule.coach_id,
                "location_id": schedule.location_id,
                "start_time": start,
                "end_time": end,
                "capacity": schedule.capacity,
                "is_cancelled": False,
                "schedule_id": schedule.id,
                "created_at": now,
                "updated_at": now,
            }
        )

    def _expand_base(
        self,
        base: List[ClassSchedule],
        overrides: List[ClassSchedule],
        start: date,
        end: date,
        now: datetime,
        pending: List[dict],
    ) -> int:
        skipped = 0
        for day in daterange(start, end):
            weekday = js_weekday(day)
            for schedule in base:
                if schedule.day_of_week != weekday:
                    continue
                # В этот день действует override на тот же слот
                if any(
                    o.location_id == schedule.location_id
                    and o.day_of_week == schedule.day_of_week
                    and o.start_time == schedule.start_time
                    and o.covers(day)
                    for o in overrides
                ):
                    continue

                class_start, class_end = self._occurrence(schedule, day)
                if class_start <= now:
                    continue

                key = minute_key(class_start)
                if self._already_generated(schedule, key) or self._slot_taken(schedule.location_id, key):
                    skipped += 1
                    continue

                self._queue(schedule, class_start, class_end, now, pending)
        return skipped

    def _expand_overrides(
        self,
        overrides: List[ClassSchedule],
        start: date,
        end: date,
        now: datetime,
        pending: List[dict],
    ) -> Tuple[int, int]:
        adopted = 0
        skipped = 0
        for override in overrides:
            first_day = max(start, override.override_start_date)
            last_day = min(end, override.override_end_date)

            for day in daterange(first_day, last_day):
                if js_weekday(day) != override.day_of_week:
                    continue

                class_start, class_end = self._occurrence(override, day)
                if class_start <= now:
                    continue

                key = minute_key(class_start)
                if self._already_generated(override, key):
                    skipped += 1
                    continue

                existing = self._find_slot(override.location_id, key)
                if existing is not None:
                    # Занятие из базового правила (или созданное вручную) переходит к override
                    existing.class_type_id = override.class_type_id
                    existing.coach_id = override.coach_id
                    existing.capacity = override.capacity
                    existing.end_time = existing.start_time + timedelta(
                        minutes=override.class_type.duration_minutes
                    )
                    existing.schedule_id = override.id
                    existing.updated_at = now
                    self.by_schedule.setdefault(override.id, set()).add(key)
                    adopted += 1
                    continue

                if self._slot_taken(override.location_id, key):
                    skipped += 1
                    continue

                self._queue(override, class_start, class_end, now, pending)

        return adopted, skipped

    async def _insert(self, rows: List[dict]) -> int:
        if not rows:
            return 0

        await self.session.flush()

        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise ValidationError(f"Unsupported database dialect: {dialect}")

        created = 0
        for offset in range(0, len(rows), INSERT_CHUNK_SIZE):
            chunk = rows[offset : offset + INSERT_CHUNK_SIZE]
            stmt = (
                insert(ClassInstance.__table__)
                .values(chunk)
                .on_conflict_do_nothing(index_elements=["location_id", "start_time"])
            )
            result = await self.session.execute(stmt)
            created += result.rowcount
        return created
