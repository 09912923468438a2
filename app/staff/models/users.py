from enum import Enum

from sqlalchemy import Column, Integer, String, Boolean, Enum as SQLEnum

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class UserRole(str, Enum):
    """Роль пользователя клуба"""
    member = "member"
    coach = "coach"
    admin = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=True)
    phone_number = Column(String(30), nullable=True)
    role = Column(
        SQLEnum(UserRole, native_enum=False, length=20),
        default=UserRole.member,
        nullable=False,
        index=True,
    )
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.coach, UserRole.admin)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
