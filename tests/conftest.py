import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Настройки должны быть выставлены до первого импорта app.*
_test_dir = tempfile.mkdtemp(prefix="club-booking-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_test_dir}/app.db"
os.environ["ENVIRONMENT"] = "test"
os.environ["CHECKIN_SECRET"] = "test-checkin-secret"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CLUB_TIMEZONE"] = "UTC"
os.environ["DB_RETRY_DELAY"] = "0.05"
os.environ["LOG_FORMAT"] = "text"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.core.database import Base, enable_sqlite_foreign_keys, get_session
from app.core.signing import CheckinTokenSigner
from app.members.models import Child, MemberPackage
from app.staff.models import (
    ClassInstance,
    ClassSchedule,
    ClassType,
    Location,
    SessionPackage,
    User,
    UserRole,
)

CHECKIN_SECRET = os.environ["CHECKIN_SECRET"]

# Понедельник, 7 января 2030, 09:00 UTC
NOW = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/test.db", connect_args={"timeout": 30}
    )
    enable_sqlite_foreign_keys(test_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as db:
        yield db


@pytest.fixture
def signer():
    return CheckinTokenSigner(CHECKIN_SECRET, max_age_minutes=180)


class Factory:
    """Создание тестовых данных; каждый метод коммитит сразу"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.counter = 0

    def _next(self) -> int:
        self.counter += 1
        return self.counter

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def user(self, role: UserRole = UserRole.member, first_name: str = "Test", last_name: str = "User"):
        n = self._next()
        return await self._save(
            User(
                email=f"user{n}@club.test",
                first_name=first_name,
                last_name=last_name,
                role=role,
            )
        )

    async def coach(self):
        return await self.user(UserRole.coach, first_name="Coach")

    async def admin(self):
        return await self.user(UserRole.admin, first_name="Admin")

    async def location(self, capacity: int = 20, is_active: bool = True):
        return await self._save(
            Location(name=f"Studio {self._next()}", capacity=capacity, is_active=is_active)
        )

    async def class_type(self, duration_minutes: int = 60):
        return await self._save(
            ClassType(name=f"Class type {self._next()}", duration_minutes=duration_minutes)
        )

    async def catalog_package(self, session_count: int = 10, expiry_days: int = 30, price: str = "100.00"):
        return await self._save(
            SessionPackage(
                name=f"{session_count} sessions #{self._next()}",
                session_count=session_count,
                expiry_days=expiry_days,
                price=Decimal(price),
            )
        )

    async def member_package(
        self,
        user: User,
        remaining: int = 5,
        total: int = None,
        expiry: datetime = None,
        purchase: datetime = None,
        is_expired: bool = False,
    ):
        catalog = await self.catalog_package(session_count=total or max(remaining, 1))
        return await self._save(
            MemberPackage(
                user_id=user.id,
                package_id=catalog.id,
                sessions_total=total or max(remaining, 1),
                sessions_remaining=remaining,
                purchase_date=purchase or NOW - timedelta(days=5),
                expiry_date=expiry or NOW + timedelta(days=30),
                is_expired=is_expired,
            )
        )

    async def class_instance(
        self,
        start: datetime,
        capacity: int = 10,
        coach: User = None,
        location: Location = None,
        class_type: ClassType = None,
        duration_minutes: int = 60,
    ):
        coach = coach or await self.coach()
        location = location or await self.location()
        class_type = class_type or await self.class_type(duration_minutes)
        return await self._save(
            ClassInstance(
                class_type=class_type,
                location=location,
                coach_id=coach.id,
                start_time=start,
                end_time=start + timedelta(minutes=class_type.duration_minutes),
                capacity=capacity,
            )
        )

    async def schedule(
        self,
        day_of_week: int,
        start_time: str,
        coach: User,
        location: Location,
        class_type: ClassType,
        capacity: int = 10,
        override_start=None,
        override_end=None,
        base_schedule: ClassSchedule = None,
    ):
        return await self._save(
            ClassSchedule(
                day_of_week=day_of_week,
                start_time=start_time,
                class_type=class_type,
                coach_id=coach.id,
                location_id=location.id,
                capacity=capacity,
                is_override=override_start is not None,
                override_start_date=override_start,
                override_end_date=override_end,
                base_schedule_id=base_schedule.id if base_schedule else None,
            )
        )

    async def child(self, parent: User, first_name: str = "Kid", age: int = 8):
        return await self._save(Child(parent_id=parent.id, first_name=first_name, age=age))


@pytest.fixture
def factory(session):
    return Factory(session)


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP клиент поверх приложения с тестовой базой"""
    from app.main import app as fastapi_app

    async def override_get_session():
        async with session_factory() as db:
            yield db

    fastapi_app.dependency_overrides[get_session] = override_get_session
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def auth():
    """Заголовки, которые проставляет шлюз аутентификации"""

    def headers(user_id: int) -> dict:
        return {"X-User-Id": str(user_id)}

    return headers
