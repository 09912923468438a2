from sqlalchemy import (
    Column,
    Integer,
    Boolean,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class ClassInstance(Base):
    """Конкретное занятие в конкретное время"""
    __tablename__ = "class_instances"

    id = Column(Integer, primary_key=True, index=True)

    class_type_id = Column(
        Integer, ForeignKey("class_types.id", ondelete="RESTRICT"), nullable=False
    )
    coach_id = Column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False
    )

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    capacity = Column(Integer, nullable=False)
    is_cancelled = Column(Boolean, default=False, nullable=False)

    # Правило, из которого сгенерировано занятие; пусто для разовых занятий
    schedule_id = Column(
        Integer, ForeignKey("class_schedules.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    class_type = relationship("ClassType", lazy="selectin")
    location = relationship("Location", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("location_id", "start_time", name="uq_class_instances_location_start"),
        CheckConstraint("end_time > start_time", name="ck_class_instances_time_range"),
        CheckConstraint("capacity > 0", name="ck_class_instances_capacity_positive"),
        Index("ix_class_instances_start", "start_time"),
    )

    def __repr__(self):
        return f"<ClassInstance(id={self.id}, location={self.location_id}, start={self.start_time}, cancelled={self.is_cancelled})>"
