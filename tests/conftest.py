from collections.abc import AsyncIterator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from placement import ApplicationLifecycleManager, OpportunityService
from placement.notifications import NotificationQueue
from portal.database import Base
from portal.dependencies import db_session
from portal.main import create_app
from tests.fakes import NOW, FakeUnitOfWork


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def uow() -> FakeUnitOfWork:
    return FakeUnitOfWork()


@pytest.fixture
def notifier() -> NotificationQueue:
    return NotificationQueue(maxsize=100)


@pytest.fixture
def manager(uow, clock, notifier) -> ApplicationLifecycleManager:
    return ApplicationLifecycleManager(uow, clock=clock, notifier=notifier)


@pytest.fixture
def opportunities(uow, clock) -> OpportunityService:
    return OpportunityService(uow, clock=clock)


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def client(session_factory) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app()

    async def _session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[db_session] = _session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        client.app = app
        yield client
