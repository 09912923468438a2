import hmac

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import (
    CHECKIN_SECRET,
    CHECKIN_TOKEN_MAX_AGE_MINUTES,
    CRON_SECRET,
)
from app.core.database import get_session
from app.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ForbiddenError,
)
from app.core.signing import CheckinTokenSigner
from app.staff.models import User

if not CHECKIN_SECRET:
    raise ConfigurationError("CHECKIN_SECRET", "Check-in signing secret is required")


checkin_signer = CheckinTokenSigner(CHECKIN_SECRET, CHECKIN_TOKEN_MAX_AGE_MINUTES)


def get_checkin_signer() -> CheckinTokenSigner:
    return checkin_signer


async def get_current_user(
    x_user_id: int = Header(..., description="Authenticated user id set by the auth gateway"),
    session: AsyncSession = Depends(get_session),
) -> User:
    """
    Текущий пользователь. Аутентификация выполняется шлюзом перед API,
    сюда приходит уже проверенный id в заголовке X-User-Id.
    """
    user = await session.get(User, x_user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Unknown or inactive user")
    return user


async def get_current_staff(user: User = Depends(get_current_user)) -> User:
    """Тренер или администратор"""
    if not user.is_staff:
        raise ForbiddenError("Coach or admin role required")
    return user


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError("Admin role required")
    return user


def verify_cron_token(x_cron_token: str = Header(...)):
    """
    Проверка токена внешнего планировщика

    Raises:
        ConfigurationError: Если токен не настроен
        ForbiddenError: Если токен неверный
    """
    if not CRON_SECRET:
        raise ConfigurationError("CRON_SECRET", "Cron token not configured on server")

    if not hmac.compare_digest(x_cron_token, CRON_SECRET):
        raise ForbiddenError("Invalid cron token")

    return True
