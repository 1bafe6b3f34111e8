"""Tests for the crypto prices API endpoints."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from cryptotracker.main import app
from cryptotracker.routers import crypto
from cryptotracker.services.coingecko import FetchResult, MarketRecord
from cryptotracker.services.ingestion import IngestionOutcome, IngestionSummary


class FakeMarketClient:
    def __init__(self, pages):
        self.pages = pages

    async def fetch_page(self, page, cancel_event=None):
        return self.pages.get(page, FetchResult.ok([]))


class StubIngestionService:
    def __init__(self, summary=None, error=None):
        self.summary = summary
        self.error = error

    async def update_prices(self, cancel_event=None):
        if self.error is not None:
            raise self.error
        return self.summary


class FailingViewService:
    async def get_latest_prices(self):
        raise RuntimeError("database unavailable")

    async def get_top_coins_by_price(self, count, now=None):
        raise RuntimeError("database unavailable")


@pytest.fixture
def use_market_pages(coingecko_options):
    """Route update requests through a fake CoinGecko client."""

    def _use(pages):
        app.dependency_overrides[crypto.get_coingecko_options] = lambda: coingecko_options
        app.dependency_overrides[crypto.get_coingecko_client] = lambda: FakeMarketClient(pages)

    return _use


def recent(days: int) -> datetime:
    return (datetime.now(timezone.utc) - timedelta(days=days)).replace(tzinfo=None)


class TestUpdatePrices:
    """Test POST /api/crypto/update-prices."""

    @pytest.mark.asyncio
    async def test_update_stores_prices(self, client, use_market_pages):
        use_market_pages({1: FetchResult.ok([
            MarketRecord(
                id="bitcoin",
                symbol="btc",
                name="Bitcoin",
                image="https://img.test/btc.png",
                current_price=Decimal("65000.12"),
                last_updated=datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc),
            ),
        ])})

        response = await client.post("/api/crypto/update-prices")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == crypto.UPDATE_SUCCESS_MESSAGE
        assert data["summary"] == {
            "outcome": "completed",
            "pages_processed": 1,
            "assets_processed": 1,
            "new_assets": 1,
            "price_updates": 1,
        }

        latest = (await client.get("/api/crypto/latest-prices")).json()
        assert [(item["name"], item["current_price"]) for item in latest] == [("Bitcoin", "65000.12")]

    @pytest.mark.asyncio
    async def test_cancelled_update_returns_no_content(self, client, use_market_pages):
        use_market_pages({1: FetchResult.cancelled()})

        response = await client.post("/api/crypto/update-prices")

        assert response.status_code == 204
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_failed_update_returns_generic_error(self, client):
        summary = IngestionSummary(outcome=IngestionOutcome.FAILED, error="database is locked")
        app.dependency_overrides[crypto.get_ingestion_service] = lambda: StubIngestionService(summary)

        response = await client.post("/api/crypto/update-prices")

        assert response.status_code == 500
        assert response.json()["detail"] == crypto.UPDATE_ERROR_MESSAGE
        assert "locked" not in response.text

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_generic_error(self, client):
        app.dependency_overrides[crypto.get_ingestion_service] = (
            lambda: StubIngestionService(error=RuntimeError("boom"))
        )

        response = await client.post("/api/crypto/update-prices")

        assert response.status_code == 500
        assert response.json()["detail"] == crypto.UPDATE_ERROR_MESSAGE


class TestLatestPrices:
    """Test GET /api/crypto/latest-prices."""

    @pytest.mark.asyncio
    async def test_empty_store(self, client):
        response = await client.get("/api/crypto/latest-prices")

        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_response_shape(self, client, add_asset):
        await add_asset("bitcoin", symbol="BTC", prices=[
            (datetime(2025, 6, 1, 12, 0), 100),
            (datetime(2025, 6, 2, 12, 0), 110),
        ])

        response = await client.get("/api/crypto/latest-prices")

        assert response.status_code == 200
        [item] = response.json()
        assert item["name"] == "Bitcoin"
        assert item["symbol"] == "BTC"
        assert item["current_price"] == "110"
        assert item["currency"] == "USD"
        assert item["icon_url"] == "https://img.test/bitcoin.png"
        assert item["last_updated"].startswith("2025-06-02T12:00:00")
        assert item["trend"] == {"direction": "up", "percentage_change": 10.0}

    @pytest.mark.asyncio
    async def test_single_entry_has_null_change(self, client, add_asset):
        await add_asset("ethereum", prices=[(datetime(2025, 6, 1, 12, 0), 3000)])

        [item] = (await client.get("/api/crypto/latest-prices")).json()

        assert item["trend"] == {"direction": "neutral", "percentage_change": None}

    @pytest.mark.asyncio
    async def test_error_returns_generic_message(self, client):
        app.dependency_overrides[crypto.get_price_view_service] = FailingViewService

        response = await client.get("/api/crypto/latest-prices")

        assert response.status_code == 500
        assert response.json()["detail"] == crypto.READ_ERROR_MESSAGE


class TestTopCoinsChart:
    """Test GET /api/crypto/top-coins-by-price-chart/{count}."""

    @pytest.mark.asyncio
    async def test_top_coins_ordered_by_price(self, client, add_asset):
        await add_asset("alpha", prices=[(recent(1), 100)])
        await add_asset("bravo", prices=[(recent(2), 280), (recent(1), 300)])
        await add_asset("charlie", prices=[(recent(1), 200)])

        response = await client.get("/api/crypto/top-coins-by-price-chart/2")

        assert response.status_code == 200
        data = response.json()
        assert [c["coin_name"] for c in data] == ["Bravo", "Charlie"]
        assert data[0]["coin_symbol"] == "BRA"
        assert [p["price"] for p in data[0]["price_history"]] == [280.0, 300.0]
        assert data[0]["price_history"][0]["date"] == recent(2).date().isoformat()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, -1])
    async def test_non_positive_count_rejected(self, client, count):
        response = await client.get(f"/api/crypto/top-coins-by-price-chart/{count}")

        assert response.status_code == 400
        assert response.json()["detail"] == "Count must be a positive integer."

    @pytest.mark.asyncio
    async def test_non_integer_count_rejected(self, client):
        response = await client.get("/api/crypto/top-coins-by-price-chart/ten")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_error_returns_generic_message(self, client):
        app.dependency_overrides[crypto.get_price_view_service] = FailingViewService

        response = await client.get("/api/crypto/top-coins-by-price-chart/5")

        assert response.status_code == 500
        assert response.json()["detail"] == crypto.CHART_ERROR_MESSAGE
