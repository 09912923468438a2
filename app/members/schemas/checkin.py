"""Check-in schemas - QR token payload and check-in readiness"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from app.members.models.bookings import BookingStatus


class CheckinToken(BaseModel):
    """Содержимое QR-кода. Подпись покрывает booking_id, user_id и timestamp."""
    booking_id: int
    user_id: int
    child_id: Optional[int] = None
    timestamp: str = Field(..., description="ISO-8601 issue time")
    signature: str = Field(..., min_length=64, max_length=64)

    class Config:
        json_schema_extra = {
            "example": {
                "booking_id": 101,
                "user_id": 7,
                "child_id": None,
                "timestamp": "2026-10-19T15:04:05.123456+00:00",
                "signature": "9f2c...64 hex chars",
            }
        }


class CheckinStatus(BaseModel):
    booking_id: int
    status: BookingStatus
    can_generate_token: bool
    checkin_window_open: bool
    hours_until_class: float
    class_start: datetime
    class_end: datetime
    attendance_marked_at: Optional[datetime] = None
