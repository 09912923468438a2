"""Каталог пакетов занятий и персональные цены"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Numeric,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
)

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class SessionPackage(Base):
    """Позиция каталога. Покупка создаёт MemberPackage и каталог не меняет."""
    __tablename__ = "session_packages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    session_count = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    expiry_days = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("session_count > 0", name="ck_session_packages_count_positive"),
        CheckConstraint("expiry_days > 0", name="ck_session_packages_expiry_positive"),
    )


class LocationPackagePrice(Base):
    __tablename__ = "location_package_prices"

    id = Column(Integer, primary_key=True)
    package_id = Column(
        Integer, ForeignKey("session_packages.id", ondelete="CASCADE"), nullable=False
    )
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False
    )
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("package_id", "location_id", name="uq_location_package_price"),
    )


class MemberPackagePrice(Base):
    """Индивидуальная цена для конкретного участника"""
    __tablename__ = "member_package_prices"

    id = Column(Integer, primary_key=True)
    package_id = Column(
        Integer, ForeignKey("session_packages.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("package_id", "user_id", name="uq_member_package_price"),
    )
