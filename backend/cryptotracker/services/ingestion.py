"""Price ingestion service.

Pulls market pages from CoinGecko, merges them into the stored assets and
appends price history rows, committing once per page.

Design constraints:
- Pages are processed strictly in order; later pages depend on the cache
  entries updated by earlier ones
- A history row is appended only for a strictly newer timestamp
- Each page is its own transaction; a failure never undoes earlier pages
- The run summary is logged whatever the outcome
"""

import asyncio
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import CryptoAsset, PriceHistoryEntry
from .asset_cache import AssetCache, AssetCacheEntry, build_asset_cache
from .coingecko import CoinGeckoClient, MarketRecord
from .config import CoinGeckoOptions
from .validation import (
    has_retrieved_records,
    is_update_needed,
    is_valid_record,
    normalize_to_utc,
)

logger = logging.getLogger(__name__)


class IngestionOutcome(str, Enum):
    """How an ingestion run ended."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class IngestionSummary:
    """Totals for one ingestion run."""
    outcome: IngestionOutcome = IngestionOutcome.COMPLETED
    pages_processed: int = 0
    assets_processed: int = 0
    new_assets: int = 0
    price_updates: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


def _is_cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class PriceIngestionService:
    """Service running the fetch, merge and persist loop."""

    def __init__(
        self,
        session: AsyncSession,
        client: CoinGeckoClient,
        options: CoinGeckoOptions,
    ):
        """Initialize ingestion service.

        Args:
            session: Database session, committed once per page
            client: CoinGecko client used to fetch pages
            options: Paging and quote currency settings
        """
        self.session = session
        self.client = client
        self.options = options

    async def update_prices(
        self,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IngestionSummary:
        """Run one ingestion over pages 1..max_page.

        Args:
            cancel_event: Set by the caller to stop the run early

        Returns:
            IngestionSummary describing totals and outcome
        """
        logger.info(f"Starting crypto price update at {datetime.now(timezone.utc).isoformat()}")

        summary = IngestionSummary()
        page = 1

        try:
            cache = await build_asset_cache(self.session)
            run_started_at = datetime.now(timezone.utc)

            while page <= self.options.max_page:
                if _is_cancelled(cancel_event):
                    summary.outcome = IngestionOutcome.CANCELLED
                    break

                result = await self.client.fetch_page(page, cancel_event)
                if result.is_cancelled:
                    summary.outcome = IngestionOutcome.CANCELLED
                    break

                if not has_retrieved_records(result.records):
                    logger.info(
                        f"No crypto assets returned for page {page}. "
                        "Processing is complete or the page could not be fetched."
                    )
                    break

                logger.info(f"Processing {len(result.records)} assets from page {page}")
                new_assets, price_updates = self.merge_records(result.records, cache, run_started_at)

                if not await self.persist_page(page, cancel_event):
                    summary.outcome = IngestionOutcome.CANCELLED
                    break

                summary.pages_processed += 1
                summary.assets_processed += len(result.records)
                summary.new_assets += new_assets
                summary.price_updates += price_updates

                if page == self.options.max_page:
                    logger.info(f"Reached configured max_page ({self.options.max_page}), stopping")
                    break
                page += 1

        except asyncio.CancelledError:
            summary.outcome = IngestionOutcome.CANCELLED
            raise
        except Exception as e:
            logger.error(f"Unexpected error during crypto price update on page {page}: {e}", exc_info=True)
            summary.outcome = IngestionOutcome.FAILED
            summary.error = str(e)
            await self.session.rollback()
        finally:
            if summary.outcome == IngestionOutcome.CANCELLED:
                logger.info("Crypto price update was cancelled")
            logger.info(
                f"Crypto price update finished ({summary.outcome.value}). "
                f"Pages: {summary.pages_processed}, assets processed: {summary.assets_processed}, "
                f"new assets: {summary.new_assets}, price updates: {summary.price_updates}"
            )

        return summary

    def merge_records(
        self,
        records: Iterable[Optional[MarketRecord]],
        cache: AssetCache,
        run_started_at: datetime,
    ) -> Tuple[int, int]:
        """Merge one page of records into the session and the cache.

        Args:
            records: Records from one fetched page
            cache: Per-run asset cache, updated in place
            run_started_at: Fallback timestamp for records without last_updated

        Returns:
            (new_assets, price_updates) for the page

        Note:
            Caller must commit the session.
        """
        new_assets = 0
        price_updates = 0

        for record in records:
            if not is_valid_record(record):
                logger.warning(f"Skipping invalid asset record from API (missing id): {record!r}")
                continue

            entry = cache.get(record.id)
            if entry is None:
                asset = CryptoAsset(
                    external_id=record.id,
                    name=record.name or "",
                    symbol=record.symbol or "",
                    currency=self.options.vs_currency,
                    icon_url=record.image or "",
                )
                self.session.add(asset)
                entry = AssetCacheEntry(asset=asset)
                cache[record.id] = entry
                new_assets += 1
                logger.debug(f"New asset '{record.id}' ({asset.symbol}) identified")
            else:
                asset = entry.asset
                if record.name is not None:
                    asset.name = record.name
                if record.symbol is not None:
                    asset.symbol = record.symbol.upper()
                if record.image is not None:
                    asset.icon_url = record.image

            effective_at = normalize_to_utc(record.last_updated, fallback=run_started_at)

            if not is_update_needed(entry.last_history_at, effective_at):
                logger.debug(
                    f"Price for '{record.id}' at {effective_at.isoformat()} already recorded or stale, skipping"
                )
                continue

            price = record.current_price
            if price is None:
                logger.warning(
                    f"Asset '{record.id}' has no current_price at {effective_at.isoformat()}, storing 0"
                )
                price = Decimal("0")

            self.session.add(PriceHistoryEntry(asset=asset, recorded_at=effective_at, price=price))
            entry.last_history_at = effective_at
            price_updates += 1
            logger.debug(f"New price for '{record.id}': {price} at {effective_at.isoformat()}")

        return new_assets, price_updates

    async def persist_page(
        self,
        page: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> bool:
        """Commit the changes merged for a page.

        Returns:
            True if committed, False if cancelled before the commit (the
            pending changes are rolled back).

        Raises:
            SQLAlchemyError: If the commit fails; the session is rolled back.
        """
        if _is_cancelled(cancel_event):
            logger.warning(f"Saving changes was cancelled for page {page}")
            await self.session.rollback()
            return False

        pending = len(self.session.new) + len(self.session.dirty)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to save changes for page {page}: {e}")
            await self.session.rollback()
            raise

        logger.info(f"Saved {pending} changes from page {page} to database")
        return True
