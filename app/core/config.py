import logging
import os

logger = logging.getLogger(__name__)

# Настройки PostgreSQL
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_DB = os.getenv("POSTGRES_DB", "clubbooking")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "db")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

# Настройки среды
ENVIRONMENT = os.getenv("ENVIRONMENT", "production").lower()
DEBUG = ENVIRONMENT in ["development", "dev"]

# Настройки retry и таймаутов для базы данных
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_DELAY = float(os.getenv("DB_RETRY_DELAY", "1.0"))
DB_RETRY_BACKOFF_FACTOR = float(os.getenv("DB_RETRY_BACKOFF_FACTOR", "2.0"))
DB_COMMAND_TIMEOUT = float(os.getenv("DB_COMMAND_TIMEOUT", "30"))

# Настройки логирования
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if not DEBUG else "text")

# Настройки приложения
APP_NAME = os.getenv("APP_NAME", "Club Booking API")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:8080"
    ).split(",")
    if origin.strip()
]
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

# Клуб
CLUB_TIMEZONE = os.getenv("CLUB_TIMEZONE", "Africa/Cairo")

# Check-in (QR)
CHECKIN_SECRET = os.getenv("CHECKIN_SECRET")
CHECKIN_TOKEN_MAX_AGE_MINUTES = int(os.getenv("CHECKIN_TOKEN_MAX_AGE_MINUTES", "180"))
CHECKIN_WINDOW_MINUTES = int(os.getenv("CHECKIN_WINDOW_MINUTES", "60"))

# Бронирования и кредиты
CANCELLATION_WINDOW_MINUTES = int(os.getenv("CANCELLATION_WINDOW_MINUTES", "60"))
EXPIRED_GRANT_EXTENSION_DAYS = int(os.getenv("EXPIRED_GRANT_EXTENSION_DAYS", "30"))
EXPIRY_WARNING_DAYS = int(os.getenv("EXPIRY_WARNING_DAYS", "7"))

# Генерация расписания
SCHEDULE_MONTHS_AHEAD = int(os.getenv("SCHEDULE_MONTHS_AHEAD", "2"))
SCHEDULE_MAX_MONTHS_AHEAD = 12

# Внешние триггеры и уведомления
CRON_SECRET = os.getenv("CRON_SECRET")
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL")
NOTIFICATION_TIMEOUT = float(os.getenv("NOTIFICATION_TIMEOUT", "10.0"))

# Первый администратор (создаётся при init, если ещё нет ни одного)
BOOTSTRAP_ADMIN_EMAIL = os.getenv("BOOTSTRAP_ADMIN_EMAIL")


# Валидация критичных настроек
def validate_config():
    """Валидация конфигурации при запуске"""
    errors = []

    if not CHECKIN_SECRET:
        errors.append("CHECKIN_SECRET is required")

    if not DATABASE_URL:
        errors.append("DATABASE_URL is required")

    if DB_RETRY_ATTEMPTS < 1:
        errors.append("DB_RETRY_ATTEMPTS must be >= 1")

    if DB_RETRY_DELAY < 0:
        errors.append("DB_RETRY_DELAY must be >= 0")

    if CHECKIN_TOKEN_MAX_AGE_MINUTES < 1:
        errors.append("CHECKIN_TOKEN_MAX_AGE_MINUTES must be >= 1")

    if not 1 <= SCHEDULE_MONTHS_AHEAD <= SCHEDULE_MAX_MONTHS_AHEAD:
        errors.append(
            f"SCHEDULE_MONTHS_AHEAD must be between 1 and {SCHEDULE_MAX_MONTHS_AHEAD}"
        )

    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")


# Автоматическая валидация при импорте (опционально)
if os.getenv("VALIDATE_CONFIG_ON_IMPORT", "true").lower() == "true":
    try:
        validate_config()
    except ValueError as e:
        logger.warning(f"⚠️  Configuration warning: {e}")
