from app.core.database import Base
from .children import Child
from .member_packages import MemberPackage
from .credit_transactions import CreditTransaction, TransactionType
from .bookings import Booking, BookingStatus

__all__ = [
    "Base",
    "Child",
    "MemberPackage",
    "CreditTransaction",
    "TransactionType",
    "Booking",
    "BookingStatus",
]
