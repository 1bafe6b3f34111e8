"""Tests for the per-run asset cache."""

from datetime import datetime, timezone

import pytest

from cryptotracker.services.asset_cache import build_asset_cache


@pytest.mark.asyncio
async def test_empty_store_gives_empty_cache(test_db):
    cache = await build_asset_cache(test_db)
    assert cache == {}


@pytest.mark.asyncio
async def test_cache_keyed_by_external_id_with_latest_timestamp(test_db, add_asset):
    await add_asset("bitcoin", prices=[
        (datetime(2025, 1, 1, 10, 0), 100),
        (datetime(2025, 1, 3, 10, 0), 120),
        (datetime(2025, 1, 2, 10, 0), 110),
    ])
    await add_asset("ethereum", prices=[(datetime(2025, 1, 1, 9, 0), 10)])

    cache = await build_asset_cache(test_db)

    assert set(cache) == {"bitcoin", "ethereum"}
    assert cache["bitcoin"].asset.name == "Bitcoin"
    assert cache["bitcoin"].last_history_at == datetime(2025, 1, 3, 10, 0, tzinfo=timezone.utc)
    assert cache["ethereum"].last_history_at == datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_asset_without_history_has_no_timestamp(test_db, add_asset):
    await add_asset("tether")

    cache = await build_asset_cache(test_db)

    assert cache["tether"].last_history_at is None


@pytest.mark.asyncio
async def test_cached_timestamps_are_utc_aware(test_db, add_asset):
    await add_asset("solana", prices=[(datetime(2025, 2, 1, 0, 0), 150)])

    cache = await build_asset_cache(test_db)

    assert cache["solana"].last_history_at.tzinfo == timezone.utc
