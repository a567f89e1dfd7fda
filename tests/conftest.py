"""Shared fixtures: an in-memory database and a stub provider adapter."""

from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from staywatch.adapters.registry import AdapterRegistry
from staywatch.db.models import Base, HolidayProfile, User
from staywatch.jobs.queues import InMemoryQueueBackend, JobQueues
from tests.factories import StubAdapter


@pytest_asyncio.fixture
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
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def stub_adapter():
    return StubAdapter("haven")


@pytest.fixture
def registry(stub_adapter):
    return AdapterRegistry([stub_adapter])


@pytest.fixture
def backend():
    return InMemoryQueueBackend()


@pytest.fixture
def queues(backend):
    return JobQueues(backend)


@pytest_asyncio.fixture
async def profile(db_session):
    """A committed user with one fixed-date profile on the stub provider."""
    user = User(email="family@example.com")
    db_session.add(user)
    await db_session.flush()
    profile = HolidayProfile(
        user_id=user.id,
        name="Summer week",
        adults=2,
        children=1,
        date_start=date(2024, 7, 1),
        nights_min=7,
        pets=False,
        min_bedrooms=2,
        providers=["haven"],
    )
    db_session.add(profile)
    await db_session.commit()
    return profile
