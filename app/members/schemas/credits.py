"""Member credit schemas - packages, balances and ledger entries"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from app.members.models.credit_transactions import TransactionType


class MemberPackageRead(BaseModel):
    id: int
    user_id: int
    package_id: int
    sessions_total: int
    sessions_remaining: int
    purchase_date: datetime
    expiry_date: datetime
    is_expired: bool

    class Config:
        from_attributes = True


class CreditSummary(BaseModel):
    """Current balance; packages are listed in the order credits are spent"""
    user_id: int
    available_credits: int
    expired_credits: int = 0
    next_expiry: Optional[datetime] = None
    packages: List[MemberPackageRead] = []


class CreditTransactionRead(BaseModel):
    id: int
    member_package_id: int
    booking_id: Optional[int] = None
    credits_change: int
    balance_after: int
    transaction_type: TransactionType
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class GrantPackageRequest(BaseModel):
    """Admin approves a purchase of a catalog package"""
    user_id: int
    package_id: int
    notes: Optional[str] = Field(None, max_length=500)


class GrantCreditsRequest(BaseModel):
    user_id: int
    amount: int = Field(..., ge=1, le=100)
    reason: Optional[str] = Field(None, max_length=500)

    class Config:
        json_schema_extra = {
            "example": {"user_id": 12, "amount": 1, "reason": "Class cancelled by coach"}
        }


class PackagePriceResponse(BaseModel):
    package_id: int
    user_id: Optional[int] = None
    location_id: Optional[int] = None
    price: float
