import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import NOTIFICATION_WEBHOOK_URL, NOTIFICATION_TIMEOUT

logger = logging.getLogger(__name__)


async def send_notification(
    event: str,
    user_id: int,
    payload: Dict[str, Any],
    webhook_url: Optional[str] = None,
) -> bool:
    """
    Отправить уведомление во внешний сервис рассылки (e-mail и т.п.).

    Ошибки только логируются: уведомление никогда не откатывает бизнес-операцию.

    Returns:
        bool: True если сервис принял уведомление
    """
    url = webhook_url or NOTIFICATION_WEBHOOK_URL
    if not url:
        logger.debug(f"Notification webhook is not configured, skipping {event}")
        return False

    body = {"event": event, "user_id": user_id, "payload": payload}

    try:
        async with httpx.AsyncClient(timeout=NOTIFICATION_TIMEOUT) as client:
            response = await client.post(url, json=body)
    except httpx.HTTPError as e:
        logger.error(
            f"Error sending notification {event}: {str(e)}",
            extra={"event": event, "user_id": user_id},
        )
        return False

    if response.is_success:
        return True

    logger.error(
        f"Notification service rejected {event}: {response.status_code}",
        extra={"event": event, "user_id": user_id, "response": response.text[:500]},
    )
    return False
