"""Pytest configuration and fixtures."""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Tuple, Union

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from cryptotracker.main import app
from cryptotracker.models import Base, get_session, enable_sqlite_foreign_keys
from cryptotracker.services.cache import view_cache
from cryptotracker.services.config import CoinGeckoOptions


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def clear_view_cache():
    """The latest-prices cache is process wide; start every test empty."""
    view_cache.invalidate()
    yield
    view_cache.invalidate()


@pytest.fixture(scope="function")
async def test_db():
    """Create a fresh test database for each test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def client(test_db):
    """Create test client with test database."""

    async def override_get_session():
        yield test_db

    app.dependency_overrides[get_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def coingecko_options():
    """Valid CoinGecko options for tests."""
    return CoinGeckoOptions(
        base_url="https://api.coingecko.test",
        market_data_endpoint="/api/v3/coins/markets",
        vs_currency="usd",
        per_page=100,
        max_page=3,
        user_agent="TestAgent/1.0",
        request_timeout_seconds=5,
    )


@pytest.fixture
def add_asset(test_db):
    """Factory fixture storing an asset with optional price history."""
    from cryptotracker.models import CryptoAsset, PriceHistoryEntry

    async def _add_asset(
        external_id: str,
        name: str = None,
        symbol: str = None,
        prices: Iterable[Tuple[datetime, Union[float, str]]] = (),
    ) -> CryptoAsset:
        asset = CryptoAsset(
            external_id=external_id,
            name=name or external_id.title(),
            symbol=symbol or external_id[:3].upper(),
            currency="usd",
            icon_url=f"https://img.test/{external_id}.png",
        )
        test_db.add(asset)
        await test_db.flush()

        for recorded_at, price in prices:
            test_db.add(PriceHistoryEntry(
                asset_id=asset.id,
                recorded_at=recorded_at,
                price=Decimal(str(price)),
            ))

        await test_db.commit()
        return asset

    return _add_asset
