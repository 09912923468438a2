from sqlalchemy import Column, Integer, String, Boolean, Text, CheckConstraint

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    address = Column(Text, nullable=True)
    capacity = Column(Integer, nullable=False, default=20)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_locations_capacity_positive"),
    )

    def __repr__(self):
        return f"<Location(id={self.id}, name={self.name}, active={self.is_active})>"
