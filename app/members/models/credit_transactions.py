"""Credit Transaction Model - append-only ledger of package balance changes"""
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    Text,
    ForeignKey,
    Index,
    Enum as SQLEnum,
)

from app.core.database import Base
from app.core.types import UTCDateTime, utcnow


class TransactionType(str, Enum):
    purchase = "purchase"
    booking = "booking"
    refund = "refund"
    expiry = "expiry"


class CreditTransaction(Base):
    """Одна запись на каждое изменение sessions_remaining. Записи не редактируются."""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    member_package_id = Column(
        Integer, ForeignKey("member_packages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    booking_id = Column(
        Integer, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True
    )

    credits_change = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    transaction_type = Column(
        SQLEnum(TransactionType, native_enum=False, length=20), nullable=False
    )
    notes = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_credit_transactions_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<CreditTransaction(id={self.id}, package={self.member_package_id}, change={self.credits_change}, type={self.transaction_type})>"
