from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

from app.members.models.bookings import BookingStatus


class AttendanceResult(BaseModel):
    """Ответ тренеру после сканирования QR"""
    booking_id: int
    class_instance_id: int
    user_id: int
    child_id: Optional[int] = None
    member_name: str
    status: BookingStatus
    attendance_marked_at: Optional[datetime] = None


class MarkAttendanceRequest(BaseModel):
    status: Literal["attended", "no_show"]
