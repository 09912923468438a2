from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from app.core.config import (
    APP_NAME,
    APP_VERSION,
    CHECKIN_TOKEN_MAX_AGE_MINUTES,
    CLUB_TIMEZONE,
    CORS_ORIGINS,
    DEBUG,
    ENVIRONMENT,
    LOG_FORMAT,
    LOG_LEVEL,
    NOTIFICATION_WEBHOOK_URL,
    validate_config,
)
from app.core.database import db_manager
from app.core.error_handlers import setup_exception_handlers
from app.core.exceptions import DatabaseConnectionError
from app.core.init_db import init_database
from app.core.limits import limiter, rate_limit_handler
from app.core.logging_utils import error_tracker, get_logger, log_business_event, setup_logging
from app.core.middleware import setup_middleware
from app.members.routers import bookings as member_bookings
from app.members.routers import checkin as member_checkin
from app.members.routers import credits as member_credits
from app.staff.routers import attendance as staff_attendance
from app.staff.routers import classes as staff_classes
from app.staff.routers import credits as staff_credits
from app.staff.routers import cron
from app.staff.routers import schedule

setup_logging(LOG_LEVEL, LOG_FORMAT)
logger = get_logger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Старт: конфиг, база, таблицы. Остановка: закрыть пул соединений."""
    logger.info(f"Starting {APP_NAME} v{APP_VERSION} ({ENVIRONMENT})")

    try:
        validate_config()
        await db_manager.check_connection()
        await init_database()
    except Exception as e:
        logger.error(f"❌ Startup failed: {str(e)}")
        error_tracker.track_error("STARTUP_ERROR", str(e), {"version": APP_VERSION})
        raise

    if not NOTIFICATION_WEBHOOK_URL:
        logger.warning("NOTIFICATION_WEBHOOK_URL is not set, member notifications are disabled")

    log_business_event(
        "application_started",
        "system",
        0,
        {
            "version": APP_VERSION,
            "environment": ENVIRONMENT,
            "club_timezone": CLUB_TIMEZONE,
            "checkin_token_max_age_minutes": CHECKIN_TOKEN_MAX_AGE_MINUTES,
        },
    )
    logger.info("🚀 Ready to take bookings")

    yield

    await db_manager.close_connections()
    logger.info("👋 Shutdown completed")


app = FastAPI(
    title=APP_NAME,
    description="Fitness club bookings, credits, schedules and QR check-in",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)
setup_middleware(
    app,
    {
        "slow_request_threshold": 2.0,
        "exclude_paths": ["/health", "/docs", "/openapi.json", "/redoc"],
    },
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# Участники
app.include_router(member_bookings.router, prefix=API_PREFIX)
app.include_router(member_checkin.router, prefix=API_PREFIX)
app.include_router(member_credits.router, prefix=API_PREFIX)
# Тренеры и администраторы
app.include_router(staff_attendance.router, prefix=API_PREFIX)
app.include_router(staff_classes.router, prefix=API_PREFIX)
app.include_router(staff_credits.router, prefix=API_PREFIX)
app.include_router(schedule.router, prefix=API_PREFIX)
# Внешний планировщик
app.include_router(cron.router, prefix=API_PREFIX)


@app.get("/health", tags=["System"])
async def health_check():
    """Проверка доступности сервиса и базы данных"""
    try:
        database_ok = await db_manager.check_connection()
    except DatabaseConnectionError:
        database_ok = False
    return {
        "status": "healthy" if database_ok else "degraded",
        "version": APP_VERSION,
        "database": "connected" if database_ok else "unavailable",
        "errors": error_tracker.get_stats(),
    }
