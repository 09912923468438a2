"""Member Package Model - purchased, time-bounded grant of session credits"""
from sqlalchemy import (
    Column,
    Integer,
    Boolean,
    ForeignKey,
    Index,
    CheckConstraint,
)

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class MemberPackage(Base):
    __tablename__ = "member_packages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    package_id = Column(
        Integer, ForeignKey("session_packages.id", ondelete="RESTRICT"), nullable=False
    )

    sessions_total = Column(Integer, nullable=False)
    # Меняется только вместе с записью CreditTransaction
    sessions_remaining = Column(Integer, nullable=False)

    purchase_date = Column(UTCDateTime, default=utcnow, nullable=False)
    expiry_date = Column(UTCDateTime, nullable=False)
    is_expired = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "sessions_remaining >= 0 AND sessions_remaining <= sessions_total",
            name="ck_member_packages_remaining_range",
        ),
        # Порядок списания: ближайший срок истечения первым
        Index("ix_member_packages_debit_order", "user_id", "is_expired", "expiry_date"),
    )

    def is_usable(self, now) -> bool:
        return (
            not self.is_expired
            and self.expiry_date >= now
            and self.sessions_remaining > 0
        )

    def __repr__(self):
        return f"<MemberPackage(id={self.id}, user_id={self.user_id}, remaining={self.sessions_remaining}/{self.sessions_total}, expiry={self.expiry_date})>"
