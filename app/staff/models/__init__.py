from app.core.database import Base
from .users import User, UserRole
from .locations import Location
from .class_types import ClassType
from .schedules import ClassSchedule
from .class_instances import ClassInstance
from .packages import SessionPackage, LocationPackagePrice, MemberPackagePrice

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Location",
    "ClassType",
    "ClassSchedule",
    "ClassInstance",
    "SessionPackage",
    "LocationPackagePrice",
    "MemberPackagePrice",
]
