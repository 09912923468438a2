"""
Перевод между локальным временем клуба и UTC.
В базе всё хранится в UTC, расписания задаются в локальном времени клуба.
"""
from datetime import date, datetime, time, timezone
from typing import Optional

import pytz

from app.core.config import CLUB_TIMEZONE


def club_tz(tz_name: Optional[str] = None):
    return pytz.timezone(tz_name or CLUB_TIMEZONE)


def local_to_utc(day: date, local_time: time, tz_name: Optional[str] = None) -> datetime:
    """Дата + время на часах клуба -> aware UTC.

    localize() сам выбирает смещение с учётом перехода на летнее время.
    """
    naive = datetime.combine(day, local_time)
    return club_tz(tz_name).localize(naive).astimezone(timezone.utc)


def utc_to_local(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(club_tz(tz_name))


def club_today(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    """Сегодняшняя дата по часам клуба"""
    now = now or datetime.now(timezone.utc)
    return utc_to_local(now, tz_name).date()


def same_club_day(a: datetime, b: datetime, tz_name: Optional[str] = None) -> bool:
    return utc_to_local(a, tz_name).date() == utc_to_local(b, tz_name).date()


def parse_hhmm(value: str) -> time:
    """'18:30' -> time(18, 30); ValueError на всё остальное"""
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
        raise ValueError(f"Time must be in HH:MM format, got '{value}'")
    hours, minutes = int(parts[0]), int(parts[1])
    if hours > 23 or minutes > 59:
        raise ValueError(f"Time out of range: '{value}'")
    return time(hours, minutes)
