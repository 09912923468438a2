from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Date,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class ClassSchedule(Base):
    """
    Еженедельное правило расписания.

    Базовое правило действует бессрочно. Правило-override действует только
    в [override_start_date, override_end_date] и в эти даты вытесняет базовые
    правила с тем же (location, day_of_week, start_time).
    """
    __tablename__ = "class_schedules"

    id = Column(Integer, primary_key=True, index=True)

    # 0 = воскресенье ... 6 = суббота
    day_of_week = Column(Integer, nullable=False)
    # "HH:MM" по часам клуба
    start_time = Column(String(5), nullable=False)

    class_type_id = Column(
        Integer, ForeignKey("class_types.id", ondelete="RESTRICT"), nullable=False
    )
    coach_id = Column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False
    )
    capacity = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    is_override = Column(Boolean, default=False, nullable=False)
    override_start_date = Column(Date, nullable=True)
    override_end_date = Column(Date, nullable=True)
    base_schedule_id = Column(
        Integer, ForeignKey("class_schedules.id", ondelete="SET NULL"), nullable=True
    )

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    class_type = relationship("ClassType", lazy="selectin")

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_schedules_day_of_week"),
        CheckConstraint("capacity > 0", name="ck_schedules_capacity_positive"),
        CheckConstraint(
            "is_override = false OR (override_start_date IS NOT NULL "
            "AND override_end_date IS NOT NULL "
            "AND override_start_date <= override_end_date)",
            name="ck_schedules_override_range",
        ),
        Index("ix_schedules_active_override", "is_active", "is_override"),
        Index("ix_schedules_slot", "location_id", "day_of_week", "start_time"),
    )

    def covers(self, day) -> bool:
        """Действует ли override в указанную дату"""
        return (
            self.is_override
            and self.override_start_date <= day <= self.override_end_date
        )

    def __repr__(self):
        kind = "override" if self.is_override else "base"
        return f"<ClassSchedule(id={self.id}, {kind}, day={self.day_of_week}, time={self.start_time}, location={self.location_id})>"
