"""Booking schemas"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from app.members.models.bookings import BookingStatus


class BookingCreate(BaseModel):
    class_instance_id: int
    # Пусто - участник записывает себя
    child_id: Optional[int] = None

    class Config:
        json_schema_extra = {"example": {"class_instance_id": 42, "child_id": None}}


class AdminBookingCreate(BookingCreate):
    user_id: int


class BookingRead(BaseModel):
    id: int
    class_instance_id: int
    user_id: int
    child_id: Optional[int] = None
    member_package_id: int
    status: BookingStatus
    booked_at: datetime
    cancelled_at: Optional[datetime] = None
    attendance_marked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookingClassInfo(BaseModel):
    id: int
    class_type_name: str
    location_name: str
    coach_id: int
    start_time: datetime
    end_time: datetime
    is_cancelled: bool


class BookingWithClass(BookingRead):
    class_instance: BookingClassInfo


class BookingListResponse(BaseModel):
    bookings: List[BookingWithClass]
    total: int


class CancelBookingResponse(BaseModel):
    booking: BookingRead
    refunded_credits: int = Field(1, description="Credits returned to the package")
    balance_after: int
