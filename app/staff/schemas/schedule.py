from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.config import SCHEDULE_MONTHS_AHEAD, SCHEDULE_MAX_MONTHS_AHEAD
from app.core.timezone_utils import parse_hhmm


class ScheduleBase(BaseModel):
    # 0 = воскресенье ... 6 = суббота
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: str = Field(..., description="HH:MM, club local time")
    class_type_id: int
    coach_id: int
    location_id: int
    capacity: int = Field(..., ge=1, le=500)

    @field_validator("start_time")
    @classmethod
    def validate_time_format(cls, v):
        parse_hhmm(v)
        return v


class ScheduleCreate(ScheduleBase):
    class Config:
        json_schema_extra = {
            "example": {
                "day_of_week": 1,
                "start_time": "18:30",
                "class_type_id": 1,
                "coach_id": 3,
                "location_id": 1,
                "capacity": 12,
            }
        }


class ScheduleOverrideCreate(ScheduleBase):
    """Временная замена базового правила на диапазон дат"""
    override_start_date: date
    override_end_date: date
    base_schedule_id: Optional[int] = None

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.override_end_date < self.override_start_date:
            raise ValueError("override_end_date must not be before override_start_date")
        return self


class ScheduleRead(BaseModel):
    id: int
    day_of_week: int
    start_time: str
    class_type_id: int
    coach_id: int
    location_id: int
    capacity: int
    is_active: bool
    is_override: bool
    override_start_date: Optional[date] = None
    override_end_date: Optional[date] = None
    base_schedule_id: Optional[int] = None

    class Config:
        from_attributes = True


class ScheduleListResponse(BaseModel):
    schedules: List[ScheduleRead]
    total: int


class GenerateClassesRequest(BaseModel):
    months_ahead: int = Field(
        SCHEDULE_MONTHS_AHEAD, ge=1, le=SCHEDULE_MAX_MONTHS_AHEAD
    )


class GenerateClassesResponse(BaseModel):
    created: int
    adopted: int
    skipped: int
    start_date: date
    end_date: date
    message: str
