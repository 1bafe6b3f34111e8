"""Per-run asset cache for price ingestion."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import CryptoAsset, PriceHistoryEntry
from .validation import normalize_to_utc

logger = logging.getLogger(__name__)


@dataclass
class AssetCacheEntry:
    """A tracked asset and the timestamp of its newest stored price."""
    asset: CryptoAsset
    last_history_at: Optional[datetime] = None


AssetCache = Dict[str, AssetCacheEntry]


async def build_asset_cache(session: AsyncSession) -> AssetCache:
    """Load every asset with its most recent history timestamp.

    The result is a snapshot taken at call time. It is not refreshed while
    an ingestion run is in progress, so a concurrent run writing to the same
    store is not seen.

    Args:
        session: Database session

    Returns:
        Mapping of external id to AssetCacheEntry
    """
    logger.info("Building asset cache from database...")

    last_recorded = func.max(PriceHistoryEntry.recorded_at).label("last_recorded_at")
    result = await session.execute(
        select(CryptoAsset, last_recorded)
        .outerjoin(PriceHistoryEntry, PriceHistoryEntry.asset_id == CryptoAsset.id)
        .group_by(CryptoAsset.id)
        .order_by(CryptoAsset.id)
    )

    cache: AssetCache = {}
    for asset, last_recorded_at in result.all():
        cache[asset.external_id] = AssetCacheEntry(
            asset=asset,
            last_history_at=normalize_to_utc(last_recorded_at),
        )

    logger.info(f"Loaded {len(cache)} existing assets into cache")
    return cache
