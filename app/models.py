"""Регистрирует все модели в Base.metadata (нужно для create_all и связей по имени)"""
from app.core.database import Base
from app.staff.models import *  # noqa: F401,F403
from app.members.models import *  # noqa: F401,F403

metadata = Base.metadata
