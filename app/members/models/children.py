from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class Child(Base):
    """Профиль ребёнка, которого участник может записывать на занятия"""
    __tablename__ = "children"

    id = Column(Integer, primary_key=True, index=True)
    parent_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=True)
    age = Column(Integer, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("age BETWEEN 1 AND 100", name="ck_children_age"),
    )
