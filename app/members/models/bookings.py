"""Booking Model - member (or child) reservation of a class instance"""
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    ForeignKey,
    Index,
    Enum as SQLEnum,
    func,
    text,
)
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class BookingStatus(str, Enum):
    confirmed = "confirmed"
    cancelled = "cancelled"
    attended = "attended"
    no_show = "no_show"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    class_instance_id = Column(
        Integer, ForeignKey("class_instances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Если пусто, на занятие записан сам участник
    child_id = Column(
        Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=True
    )
    # Пакет, с которого списан кредит; сюда же возвращается при отмене
    member_package_id = Column(
        Integer, ForeignKey("member_packages.id", ondelete="RESTRICT"), nullable=False
    )

    status = Column(
        SQLEnum(BookingStatus, native_enum=False, length=20),
        default=BookingStatus.confirmed,
        nullable=False,
        index=True,
    )

    booked_at = Column(UTCDateTime, default=utcnow, nullable=False)
    cancelled_at = Column(UTCDateTime, nullable=True)
    attendance_marked_at = Column(UTCDateTime, nullable=True)

    class_instance = relationship("ClassInstance", lazy="selectin")

    __table_args__ = (
        Index("ix_bookings_instance_status", "class_instance_id", "status"),
        Index("ix_bookings_user_status", "user_id", "status"),
    )

    def __repr__(self):
        return f"<Booking(id={self.id}, user_id={self.user_id}, class_instance_id={self.class_instance_id}, status={self.status})>"


# Одна подтверждённая запись на (занятие, участник, ребёнок); отменённые не мешают записаться снова
Index(
    "uq_bookings_confirmed_attendee",
    Booking.class_instance_id,
    Booking.user_id,
    func.coalesce(Booking.child_id, 0),
    unique=True,
    postgresql_where=text("status = 'confirmed'"),
    sqlite_where=text("status = 'confirmed'"),
)
