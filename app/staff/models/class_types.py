from datetime import timedelta

from sqlalchemy import Column, Integer, String, Text, Boolean

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class ClassType(Base):
    """Вид занятия (йога, кроссфит, ...) и его длительность"""
    __tablename__ = "class_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    def __repr__(self):
        return f"<ClassType(id={self.id}, name={self.name}, duration={self.duration_minutes})>"
