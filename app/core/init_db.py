import asyncio
import logging

from sqlalchemy import inspect, select, text
from sqlalchemy.exc import SQLAlchemyError

import app.models  # noqa: F401  регистрирует все таблицы в Base.metadata
from app.core.config import BOOTSTRAP_ADMIN_EMAIL, ENVIRONMENT
from app.core.database import async_session, db_manager, db_operation, engine, Base
from app.core.exceptions import DatabaseError, ConfigurationError
from app.staff.models import User, UserRole

logger = logging.getLogger(__name__)


async def run_migrations():
    """Run pending database migrations on PostgreSQL (adds missing columns/indexes)"""
    if engine.dialect.name != "postgresql":
        logger.debug("Migrations skipped: not a PostgreSQL database")
        return

    migrations = [
        # Переопределения расписания на диапазон дат
        {
            "name": "add_class_schedules_base_schedule_id_column",
            "check": "SELECT column_name FROM information_schema.columns WHERE table_name='class_schedules' AND column_name='base_schedule_id'",
            "apply": "ALTER TABLE class_schedules ADD COLUMN base_schedule_id INTEGER REFERENCES class_schedules(id) ON DELETE SET NULL",
        },
        # Дети участников в бронированиях
        {
            "name": "add_bookings_child_id_column",
            "check": "SELECT column_name FROM information_schema.columns WHERE table_name='bookings' AND column_name='child_id'",
            "apply": "ALTER TABLE bookings ADD COLUMN child_id INTEGER REFERENCES children(id) ON DELETE CASCADE",
        },
        # Одна подтверждённая бронь на участника (или ребёнка) на занятие
        {
            "name": "add_bookings_confirmed_unique_index",
            "check": "SELECT indexname FROM pg_indexes WHERE tablename='bookings' AND indexname='uq_bookings_confirmed_attendee'",
            "apply": (
                "CREATE UNIQUE INDEX uq_bookings_confirmed_attendee ON bookings "
                "(class_instance_id, user_id, coalesce(child_id, 0)) WHERE status = 'confirmed'"
            ),
        },
    ]

    async with engine.begin() as conn:
        for migration in migrations:
            # Savepoint: неудачная миграция не должна ломать остальные
            try:
                async with conn.begin_nested():
                    result = await conn.execute(text(migration["check"]))
                    exists = result.fetchone() is not None

                    if not exists:
                        logger.info(f"Applying migration: {migration['name']}")
                        await conn.execute(text(migration["apply"]))
                        logger.info(f"✅ Migration applied: {migration['name']}")
                    else:
                        logger.debug(f"Migration already applied: {migration['name']}")
            except SQLAlchemyError as e:
                logger.warning(f"Migration {migration['name']} skipped: {e}")


@db_operation
async def create_bootstrap_admin():
    """Create the first admin from BOOTSTRAP_ADMIN_EMAIL if the club has none"""
    if not BOOTSTRAP_ADMIN_EMAIL:
        logger.info("BOOTSTRAP_ADMIN_EMAIL not set, skipping admin creation")
        return None

    async with async_session() as session:
        try:
            existing_admin = await session.scalar(
                select(User.id).where(User.role == UserRole.admin).limit(1)
            )
            if existing_admin is not None:
                logger.info("Admin already exists, skipping creation")
                return existing_admin

            user = await session.scalar(
                select(User).where(User.email == BOOTSTRAP_ADMIN_EMAIL)
            )
            if user is None:
                user = User(email=BOOTSTRAP_ADMIN_EMAIL, first_name="Admin")
                session.add(user)
            user.role = UserRole.admin
            user.is_active = True

            await session.commit()
            logger.info(f"Bootstrap admin ready: {BOOTSTRAP_ADMIN_EMAIL}")
            return user.id

        except SQLAlchemyError as e:
            logger.error(f"Failed to create bootstrap admin: {e}")
            await session.rollback()
            raise DatabaseError(f"Failed to create bootstrap admin: {str(e)}")


async def init_database():
    """Initialize database with tables and initial data"""
    try:
        logger.info("Starting database initialization...")

        await db_manager.check_connection()
        logger.info("✅ Database connection verified")

        await db_manager.create_tables()
        logger.info("✅ Database tables created/verified")

        await run_migrations()
        logger.info("✅ Database migrations checked/applied")

        await create_bootstrap_admin()
        logger.info("✅ Initial data created/verified")

        logger.info("🎉 Database initialization completed successfully")

    except SQLAlchemyError as e:
        logger.error(f"Unexpected error during database initialization: {e}")
        raise DatabaseError(f"Database initialization failed: {str(e)}")


async def verify_database_setup():
    """Verify that every mapped table exists"""
    try:
        logger.info("Verifying database setup...")

        async with engine.connect() as conn:
            existing = await conn.run_sync(
                lambda sync_conn: set(inspect(sync_conn).get_table_names())
            )

        missing = sorted(set(Base.metadata.tables) - existing)
        if missing:
            raise DatabaseError(f"Missing tables: {', '.join(missing)}")

        logger.info(f"✅ Database verification passed: {len(existing)} tables found")
        return True

    except SQLAlchemyError as e:
        logger.error(f"Database verification failed: {e}")
        raise DatabaseError(f"Database verification failed: {str(e)}")


async def reset_database():
    """Reset database (for development/testing only)"""
    if ENVIRONMENT not in ["development", "dev", "test"]:
        raise ConfigurationError(
            "ENVIRONMENT",
            "Database reset is only allowed in development or test environments",
        )

    try:
        logger.warning("🚨 RESETTING DATABASE - ALL DATA WILL BE LOST!")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        logger.info("✅ All tables dropped")

        await init_database()

        logger.info("✅ Database reset completed")

    except SQLAlchemyError as e:
        logger.error(f"Database reset failed: {e}")
        raise DatabaseError(f"Database reset failed: {str(e)}")


if __name__ == "__main__":
    import sys

    async def main():
        if len(sys.argv) > 1:
            command = sys.argv[1]

            if command == "init":
                await init_database()
            elif command == "verify":
                await verify_database_setup()
            elif command == "reset":
                await reset_database()
            else:
                print(f"Unknown command: {command}")
                print("Available commands: init, verify, reset")
                sys.exit(1)
        else:
            await init_database()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Database initialization cancelled by user")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
