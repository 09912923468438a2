import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.exceptions import (
    ConfigurationError,
    InvalidSignatureError,
    InvalidTokenError,
    TokenExpiredError,
)

logger = logging.getLogger(__name__)


def checkin_message(booking_id: int, user_id: int, timestamp: str) -> bytes:
    return f"{booking_id}:{user_id}:{timestamp}".encode()


def sign(secret: str, booking_id: int, user_id: int, timestamp: str) -> str:
    """HMAC-SHA256 hex от 'bookingId:userId:timestamp'"""
    return hmac.new(
        secret.encode(), checkin_message(booking_id, user_id, timestamp), hashlib.sha256
    ).hexdigest()


def verify(secret: str, booking_id: int, user_id: int, timestamp: str, signature: str) -> bool:
    expected = sign(secret, booking_id, user_id, timestamp)
    return hmac.compare_digest(expected, signature or "")


def parse_timestamp(timestamp: str) -> datetime:
    # fromisoformat до 3.11 не понимает суффикс Z (Date.toISOString)
    if isinstance(timestamp, str) and timestamp.endswith(("Z", "z")):
        timestamp = timestamp[:-1] + "+00:00"
    try:
        issued_at = datetime.fromisoformat(timestamp)
    except (TypeError, ValueError):
        raise InvalidTokenError("Check-in token timestamp is not a valid ISO datetime")
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    return issued_at


class CheckinTokenSigner:
    """Подпись и проверка QR-токенов check-in одним ключом"""

    def __init__(self, secret: str, max_age_minutes: int = 180):
        if not secret:
            raise ConfigurationError("CHECKIN_SECRET", "Check-in signing secret is required")
        self.secret = secret
        self.max_age = timedelta(minutes=max_age_minutes)
        self.max_age_minutes = max_age_minutes

    def issue(self, booking_id: int, user_id: int, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now(timezone.utc)
        timestamp = now.astimezone(timezone.utc).isoformat()
        return {
            "booking_id": booking_id,
            "user_id": user_id,
            "timestamp": timestamp,
            "signature": sign(self.secret, booking_id, user_id, timestamp),
        }

    def verify(
        self,
        booking_id: int,
        user_id: int,
        timestamp: str,
        signature: str,
        now: Optional[datetime] = None,
    ) -> datetime:
        """
        Проверяет подпись, затем возраст токена.

        Returns:
            Время выпуска токена (aware UTC)

        Raises:
            InvalidSignatureError: подпись не совпала
            InvalidTokenError: timestamp не разбирается
            TokenExpiredError: токен старше max_age
        """
        if not verify(self.secret, booking_id, user_id, timestamp, signature):
            logger.warning(
                "Check-in token signature mismatch",
                extra={"booking_id": booking_id, "user_id": user_id},
            )
            raise InvalidSignatureError()

        issued_at = parse_timestamp(timestamp)
        now = now or datetime.now(timezone.utc)
        if now - issued_at > self.max_age:
            raise TokenExpiredError(self.max_age_minutes)

        return issued_at
