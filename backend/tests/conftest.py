"""Pytest configuration and fixtures."""

import pytest
from unittest.mock import AsyncMock
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app, attach_services
from app.models import Base
from app.services.change_feed import ChangeFeed
from app.services.config import ConfigService
from app.services.document_store import DocumentStore
from app.services.fetcher import ResilientFetcher
from app.services.proxy_pool import ProxyHealthTracker
from app.services.supply_tracking import SnapshotStore


# Test database URL (in-memory SQLite shared by every session)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

RELAYS = ["http://relay-a:8080", "http://relay-b:8080", "http://relay-c:8080"]


@pytest.fixture(scope="function")
async def session_factory():
    """Session factory over a fresh in-memory database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def documents(session_factory, change_feed):
    return DocumentStore(session_factory, change_feed)


@pytest.fixture
def snapshots(session_factory):
    return SnapshotStore(session_factory)


@pytest.fixture
def probe():
    """Relay liveness check that reports every endpoint alive."""
    return AsyncMock(return_value=True)


@pytest.fixture
def proxy_pool(probe):
    return ProxyHealthTracker(endpoints=RELAYS, probe=probe)


@pytest.fixture
def fetcher(proxy_pool):
    return ResilientFetcher(proxy_pool, rate_limit_cooldown=0)


@pytest.fixture
def config(tmp_path):
    """Configuration with no file on disk (all defaults)."""
    service = ConfigService(str(tmp_path / "config.yaml"))
    service.load_and_validate()
    return service


@pytest.fixture(scope="function")
async def client(session_factory, config):
    """Create test client over the test database (scheduler not started)."""
    attach_services(app, config, session_factory)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_coin():
    """Factory for upstream CoinGecko market entries."""

    def _make(coin_id, price=10.0, **overrides):
        coin = {
            "id": coin_id,
            "symbol": coin_id[:4],
            "name": coin_id.replace("-", " ").title(),
            "image": f"https://img.example/{coin_id}.png",
            "current_price": price,
            "market_cap": 1_000_000_000,
            "market_cap_rank": 1,
            "total_volume": 50_000_000,
            "price_change_percentage_24h": 1.5,
            "circulating_supply": 1_000_000,
            "total_supply": 2_000_000,
            "max_supply": 2_000_000,
            "sparkline_in_7d": {"price": [price, price * 1.01]},
        }
        coin.update(overrides)
        return coin

    return _make
