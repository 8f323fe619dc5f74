import os

# Настройки должны быть выставлены до первого импорта core.config
os.environ["POSTGRES_DSN"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CHANGE_FEED_BACKEND"] = "memory"

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Важно: импортируем все модели, чтобы они попали в Base.metadata
import app.models  # noqa: F401
from app.models import Auction, Bid, Profile
from app.models.base import Base, utcnow
from app.sync.feed import InMemoryChangeFeed

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture
async def test_engine():
    """Отдельная in-memory база на каждый тест"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def make_profile(session):
    async def _make(role: str = "driver", **fields) -> Profile:
        profile = Profile(role=role, **fields)
        session.add(profile)
        await session.commit()
        return profile

    return _make


@pytest.fixture
def make_auction(session, make_profile):
    async def _make(consigner: Profile | None = None, **fields) -> Auction:
        consigner = consigner or await make_profile("consigner", username="consigner")
        now = utcnow()
        values = {
            "title": "Delivery from Almaty to Astana",
            "start_time": now,
            "end_time": now + timedelta(hours=1),
            "consignment_date": now + timedelta(days=2),
            "status": "active",
        }
        values.update(fields)
        auction = Auction(created_by=consigner.id, **values)
        session.add(auction)
        await session.commit()
        return auction

    return _make


@pytest.fixture
def make_bid(session):
    """Вставляет ставку напрямую, минуя движок (для подготовки состояния)"""

    async def _make(auction: Auction, driver: Profile, amount, **fields) -> Bid:
        bid = Bid(auction_id=auction.id, user_id=driver.id, amount=Decimal(str(amount)), **fields)
        session.add(bid)
        await session.commit()
        return bid

    return _make


@pytest_asyncio.fixture
async def admin_client(session_factory, feed):
    """HTTP-клиент админ-API с токеном администратора"""
    from admin.app import create_app
    from admin.app.auth import create_access_token
    from admin.app.database import get_db, get_feed
    from app.services.identity import IdentityProvider

    async with session_factory() as db:
        admin = await IdentityProvider(db).create_user("admin@example.com", "Adm1n_test_pass!", is_admin=True)

    async def _get_test_db():
        async with session_factory() as db:
            yield db

    app = create_app()
    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_feed] = lambda: feed

    token = create_access_token({"sub": admin.id, "scopes": ["admin"]})
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as client:
        yield client
