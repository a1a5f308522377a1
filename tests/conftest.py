import os

# Settings are read at import time, so the test environment goes first
os.environ["APP_ENV"] = "test"
os.environ["SQL_DSN"] = "sqlite+aiosqlite:///./test.db"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date, time, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.base import Base
from app.db.sql import engine_options, get_session
from app.main import app
from app import models  # noqa: F401
from app.modules.doctors import repository as doctors_repo
from app.modules.notifications.relay import relay
from app.modules.time_slots import repository as slots_repo
from app.modules.users.models import UserRole
from app.modules.users.repository import create_user

SLOT_DAY = date.today() + timedelta(days=3)


@pytest.fixture
async def engine(tmp_path):
    dsn = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    eng = create_async_engine(dsn, **engine_options(dsn))
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def seed(session_factory):
    """
    Two agents, a supervisor, an admin, one hospital, one doctor and two
    slots on the same day (capacity 2 and 1).
    """
    async with session_factory() as s:
        admin = await create_user(s, email="admin@example.com", name="Admin", role=UserRole.ADMIN)
        supervisor = await create_user(s, email="lead@example.com", name="Lead", role=UserRole.SUPERVISOR)
        agent = await create_user(
            s, email="agent@example.com", name="Agent One", company_name="Acme Corp"
        )
        other_agent = await create_user(s, email="agent2@example.com", name="Agent Two")

        hospital = await doctors_repo.create_hospital(
            s, name="City General", address="1 Main St", city="Colombo"
        )
        doctor = await doctors_repo.create_doctor(
            s,
            hospital_id=hospital.id,
            name="Dr. Silva",
            email="silva@example.com",
            specialization="Cardiology",
            qualification="MBBS",
            consultation_fee=Decimal("2500.00"),
        )
        slot = await slots_repo.create_slot(
            s,
            doctor_id=doctor.id,
            slot_date=SLOT_DAY,
            start_time=time(9, 0),
            end_time=time(12, 0),
            max_appointments=2,
            consultation_fee=Decimal("2500.00"),
        )
        small_slot = await slots_repo.create_slot(
            s,
            doctor_id=doctor.id,
            slot_date=SLOT_DAY,
            start_time=time(17, 0),
            end_time=time(19, 0),
            max_appointments=1,
            consultation_fee=Decimal("3000.00"),
        )
        await s.commit()

    return SimpleNamespace(
        admin=admin,
        supervisor=supervisor,
        agent=agent,
        other_agent=other_agent,
        hospital=hospital,
        doctor=doctor,
        slot=slot,
        small_slot=small_slot,
    )


@pytest.fixture
def subscription():
    sub = relay.subscribe()
    yield sub
    relay.unsubscribe(sub.handle)


@pytest.fixture
async def client(session_factory):
    async def _session_override():
        async with session_factory() as s:
            try:
                yield s
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = _session_override
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()


