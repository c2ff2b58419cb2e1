import os

# Настройки читаются при импорте, поэтому окружение задается до импорта chainraffle
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WINNER_SWEEP_INTERVAL", "0")
os.environ.setdefault("PAYMENT_VERIFICATION", "none")

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from chainraffle.database import models  # noqa: F401
from chainraffle.database.db import Base, get_session
from chainraffle.database.repositories import RaffleRepository
from chainraffle.utils.cache import cache
from chainraffle.utils.helpers import utcnow
from chainraffle.webapp.app import setup_webapp


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(autouse=True)
async def clear_cache():
    await cache.clear()
    yield
    await cache.clear()


@pytest.fixture
def make_raffle(session):
    async def factory(**overrides):
        params = {
            "title": "Test raffle",
            "max_tickets": 10,
            "receiving_address": "0xreceiver",
            "ends_at": utcnow() + timedelta(hours=1),
            "ticket_price": Decimal("0.01"),
            "prize_amount": Decimal("1.5"),
            "status": "live",
        }
        params.update(overrides)
        return await RaffleRepository(session).create(**params)

    return factory


@pytest.fixture
def app(session_factory):
    app = setup_webapp()

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
