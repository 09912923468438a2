from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ClassInstanceCreate(BaseModel):
    """Разовое занятие вне расписания"""
    class_type_id: int
    coach_id: int
    location_id: int
    start_time: datetime
    # По умолчанию start_time + длительность вида занятия
    end_time: Optional[datetime] = None
    # По умолчанию вместимость локации
    capacity: Optional[int] = Field(None, ge=1, le=500)

    @field_validator("start_time", "end_time")
    @classmethod
    def require_timezone(cls, v):
        if v is not None and v.tzinfo is None:
            raise ValueError("datetime must include a timezone offset")
        return v


class ClassInstanceRead(BaseModel):
    id: int
    class_type_id: int
    coach_id: int
    location_id: int
    start_time: datetime
    end_time: datetime
    capacity: int
    is_cancelled: bool
    schedule_id: Optional[int] = None

    class Config:
        from_attributes = True


class CascadeResult(BaseModel):
    """Итог каскадной отмены: сколько занятий затронуто и сколько кредитов вернули"""
    classes_affected: int = 0
    bookings_refunded: int = 0
    refunded_user_ids: List[int] = []
    schedules_deactivated: int = 0
