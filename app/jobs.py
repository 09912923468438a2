"""
Периодические задачи для внешнего планировщика (cron, k8s CronJob):

    python -m app.jobs generate [months_ahead]
    python -m app.jobs expire
    python -m app.jobs warn-expiring [days]
"""
import asyncio
import logging
import sys

from app.core.config import EXPIRY_WARNING_DAYS, LOG_FORMAT, LOG_LEVEL, SCHEDULE_MONTHS_AHEAD
from app.core.database import async_session, db_manager
from app.core.logging_utils import setup_logging
from app.core.notification_sender import send_notification
from app.members.crud.ledger import expire_packages, find_expiring_packages
from app.staff.services.schedule_generator import ScheduleGenerator

logger = logging.getLogger(__name__)


async def run_generate(months_ahead: int = SCHEDULE_MONTHS_AHEAD):
    async with async_session() as session:
        result = await ScheduleGenerator(session).generate(months_ahead)
    logger.info(
        f"Schedule generation done: created={result.created}, "
        f"adopted={result.adopted}, skipped={result.skipped}"
    )
    return result


async def run_expire():
    async with async_session() as session:
        expired = await expire_packages(session)
    logger.info(f"Expiry sweep done: {expired} packages expired")
    return expired


async def run_warn_expiring(within_days: int = EXPIRY_WARNING_DAYS):
    """Уведомить участников, у которых скоро сгорят кредиты"""
    async with async_session() as session:
        packages = await find_expiring_packages(session, within_days)

    sent = 0
    for package in packages:
        delivered = await send_notification(
            "credits_expiring",
            package.user_id,
            {
                "member_package_id": package.id,
                "sessions_remaining": package.sessions_remaining,
                "expiry_date": package.expiry_date.isoformat(),
            },
        )
        if delivered:
            sent += 1

    logger.info(f"Expiry warnings sent: {sent}/{len(packages)}")
    return sent


COMMANDS = {
    "generate": run_generate,
    "expire": run_expire,
    "warn-expiring": run_warn_expiring,
}


async def main(argv):
    if not argv or argv[0] not in COMMANDS:
        print(f"Available commands: {', '.join(COMMANDS)}")
        return 1

    command = COMMANDS[argv[0]]
    args = [int(value) for value in argv[1:2]]
    try:
        await command(*args)
    finally:
        await db_manager.close_connections()
    return 0


if __name__ == "__main__":
    setup_logging(LOG_LEVEL, LOG_FORMAT)
    try:
        sys.exit(asyncio.run(main(sys.argv[1:])))
    except KeyboardInterrupt:
        logger.info("Job cancelled by user")
    except Exception as e:
        logger.error(f"Job failed: {e}")
        sys.exit(1)
