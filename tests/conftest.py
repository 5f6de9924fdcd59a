import math
import os
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_SWEEP_INTERVAL_SECONDS", "0")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shared.db import Base
import services.user_management.models
import services.attendance_management_system.models
import services.face_recognition.models
from services.user_management.models.users import AdminAccount, StudentAccount
from services.user_management.models.subjects import Enrollment, Room, Subject, TimeSlot
from services.attendance_management_system.geofence import EARTH_RADIUS_METERS

TZ = ZoneInfo("Asia/Ho_Chi_Minh")

# 2024-01-01 is a Monday
MONDAY = date(2024, 1, 1)
TUESDAY = date(2024, 1, 2)

ROOM_LAT = 10.7626
ROOM_LON = 106.6601


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=TZ)


def north_of(lat: float, meters: float) -> float:
    return lat + math.degrees(meters / EARTH_RADIUS_METERS)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(db):
    """One subject on Mondays 09:00-10:30 in a room with a 50 m fence, one enrolled student."""
    db.add_all([
        Subject(id="CS101", code="CS101", name="Intro to Programming"),
        Room(id="A101", latitude=ROOM_LAT, longitude=ROOM_LON, radius=50),
        TimeSlot(
            id="TS1",
            subject_id="CS101",
            room_id="A101",
            day_of_week="Mon",
            start_time=time(9, 0),
            end_time=time(10, 30),
        ),
        StudentAccount(id="SV001", name="Nguyen An", email="an@example.com", hashed_password="x"),
        StudentAccount(id="SV002", name="Tran Binh", email="binh@example.com", hashed_password="x"),
    ])
    await db.commit()
    db.add(Enrollment(student_id="SV001", subject_id="CS101", semester="2024-1"))
    await db.commit()
    return db


@pytest.fixture
async def admin(db):
    account = AdminAccount(id="AD001", name="Admin", email="admin@example.com", hashed_password="x")
    db.add(account)
    await db.commit()
    return account
