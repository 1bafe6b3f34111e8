"""Read views over stored price history.

Two views are derived on every request and never persisted:
- Latest prices: newest price per asset with the trend against the
  previous observation
- Top coins by price: the N highest-priced assets with a 30-day chart of
  daily average prices
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import CryptoAsset, PriceHistoryEntry
from .cache import ViewCacheService, view_cache
from .config import DEFAULT_LATEST_PRICES_TTL_SECONDS
from .validation import has_sufficient_history_for_trend, normalize_to_utc

logger = logging.getLogger(__name__)

LATEST_PRICES_CACHE_KEY = "coins"
CHART_WINDOW_DAYS = 30

PRICE_QUANTUM = Decimal("1e-16")
PERCENT_QUANTUM = Decimal("0.01")


class TrendDirection(str, Enum):
    """Direction of the latest price move."""
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


@dataclass
class Trend:
    """Price trend between the two most recent observations."""
    direction: TrendDirection
    percentage_change: Optional[Decimal] = None


@dataclass
class PricePoint:
    """A stored observation as loaded for view derivation."""
    recorded_at: datetime
    price: Decimal


@dataclass
class AssetPriceSnapshot:
    """An asset with its most recent observations, newest first."""
    id: int
    name: str
    symbol: str
    icon_url: str
    entries: List[PricePoint] = field(default_factory=list)


@dataclass
class LatestPriceView:
    """Latest price of an asset, ready for display."""
    name: str
    symbol: str
    current_price: str
    currency: str
    icon_url: str
    last_updated: datetime
    trend: Trend


@dataclass
class PriceDataPoint:
    """Average price for one UTC calendar day."""
    date: date
    price: Decimal


@dataclass
class CoinChartView:
    """Chart data for one asset."""
    coin_name: str
    coin_symbol: str
    price_history: List[PriceDataPoint] = field(default_factory=list)


def calculate_trend(latest: Decimal, previous: Optional[Decimal]) -> Trend:
    """Compute direction and percentage change from previous to latest.

    Without a previous price the trend is neutral with no percentage. A
    previous price of zero is reported as +100/-100/0 depending on the sign
    of the latest price.
    """
    if previous is None:
        return Trend(TrendDirection.NEUTRAL, None)

    if previous == 0:
        if latest > 0:
            direction, change = TrendDirection.UP, Decimal("100")
        elif latest < 0:
            direction, change = TrendDirection.DOWN, Decimal("-100")
        else:
            direction, change = TrendDirection.NEUTRAL, Decimal("0")
    else:
        change = (latest - previous) / previous * 100
        if latest > previous:
            direction = TrendDirection.UP
        elif latest < previous:
            direction = TrendDirection.DOWN
        else:
            direction = TrendDirection.NEUTRAL

    return Trend(direction, change.quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_EVEN))


def format_price(price: Decimal) -> str:
    """Format a price with at most 16 fractional digits and no trailing zeros."""
    with localcontext() as ctx:
        ctx.prec = 60
        quantized = Decimal(price).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)

    text = format(quantized, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("", "-0"):
        text = "0"
    return text


def average_by_day(points: List[PricePoint]) -> List[PriceDataPoint]:
    """Average prices per UTC date, ascending by date."""
    by_day: Dict[date, List[Decimal]] = {}
    for point in points:
        day = normalize_to_utc(point.recorded_at).date()
        by_day.setdefault(day, []).append(Decimal(point.price))

    return [
        PriceDataPoint(date=day, price=sum(prices) / len(prices))
        for day, prices in sorted(by_day.items())
    ]


class PriceViewService:
    """Service deriving price views from stored history."""

    def __init__(
        self,
        session: AsyncSession,
        quote_currency: str,
        cache: ViewCacheService = view_cache,
        cache_ttl_seconds: float = DEFAULT_LATEST_PRICES_TTL_SECONDS,
    ):
        """Initialize price view service.

        Args:
            session: Database session (read only)
            quote_currency: Currency code shown next to prices
            cache: View cache for the latest-prices query
            cache_ttl_seconds: How long the latest-prices query is reused
        """
        self.session = session
        self.quote_currency = quote_currency
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    async def get_latest_prices(self) -> List[LatestPriceView]:
        """Latest price and trend for every asset with history, in insertion order."""
        logger.info("Fetching latest crypto prices with trend data")

        snapshots = await self.cache.get_or_populate(
            LATEST_PRICES_CACHE_KEY,
            self.cache_ttl_seconds,
            lambda: self._load_recent_history(per_asset=2),
        )

        currency = (self.quote_currency or "usd").upper()
        views: List[LatestPriceView] = []

        for snapshot in snapshots:
            if not has_sufficient_history_for_trend(snapshot.entries):
                logger.debug(
                    f"Asset '{snapshot.name}' (ID: {snapshot.id}) has no price history, skipping"
                )
                continue

            latest = snapshot.entries[0]
            previous = snapshot.entries[1] if len(snapshot.entries) > 1 else None

            views.append(LatestPriceView(
                name=snapshot.name,
                symbol=snapshot.symbol,
                current_price=format_price(latest.price),
                currency=currency,
                icon_url=snapshot.icon_url,
                last_updated=normalize_to_utc(latest.recorded_at),
                trend=calculate_trend(latest.price, previous.price if previous else None),
            ))

        logger.info(f"Built {len(views)} latest price views")
        return views

    async def get_top_coins_by_price(
        self,
        count: int,
        now: Optional[datetime] = None,
    ) -> List[CoinChartView]:
        """Top ``count`` assets by latest price with 30 days of daily averages.

        Args:
            count: Number of assets to return; below 1 returns an empty list
            now: End of the chart window (defaults to the current UTC time)

        Returns:
            Chart views, highest latest price first
        """
        logger.info(f"Fetching top {count} coins by latest price")

        if count < 1:
            logger.warning(f"Requested top coin count {count} is not positive, returning empty list")
            return []

        window_end = normalize_to_utc(now) if now is not None else datetime.now(timezone.utc)
        window_start = window_end - timedelta(days=CHART_WINDOW_DAYS)

        snapshots = [
            snapshot
            for snapshot in await self._load_recent_history(per_asset=1)
            if snapshot.entries
        ]
        top_assets = sorted(snapshots, key=lambda s: s.entries[0].price, reverse=True)[:count]

        if not top_assets:
            logger.info("No assets with price history, returning empty list")
            return []

        charts: List[CoinChartView] = []
        for snapshot in top_assets:
            result = await self.session.execute(
                select(PriceHistoryEntry.recorded_at, PriceHistoryEntry.price)
                .where(
                    PriceHistoryEntry.asset_id == snapshot.id,
                    PriceHistoryEntry.recorded_at >= window_start,
                )
            )
            points = [PricePoint(recorded_at=row.recorded_at, price=row.price) for row in result.all()]
            daily = average_by_day(points)

            if not daily:
                logger.debug(
                    f"No price history in the last {CHART_WINDOW_DAYS} days for "
                    f"'{snapshot.name}' (ID: {snapshot.id})"
                )

            charts.append(CoinChartView(
                coin_name=snapshot.name,
                coin_symbol=snapshot.symbol,
                price_history=daily,
            ))

        logger.info(f"Built chart views for {len(charts)} coins")
        return charts

    async def _load_recent_history(self, per_asset: int) -> List[AssetPriceSnapshot]:
        """Load every asset with its ``per_asset`` newest observations.

        Assets without history are included with an empty entry list.
        """
        ranked = (
            select(
                PriceHistoryEntry.asset_id,
                PriceHistoryEntry.recorded_at,
                PriceHistoryEntry.price,
                func.row_number().over(
                    partition_by=PriceHistoryEntry.asset_id,
                    order_by=(PriceHistoryEntry.recorded_at.desc(), PriceHistoryEntry.id.desc()),
                ).label("rank"),
            )
            .subquery()
        )

        result = await self.session.execute(
            select(
                CryptoAsset.id,
                CryptoAsset.name,
                CryptoAsset.symbol,
                CryptoAsset.icon_url,
                ranked.c.recorded_at,
                ranked.c.price,
            )
            .outerjoin(
                ranked,
                and_(ranked.c.asset_id == CryptoAsset.id, ranked.c.rank <= per_asset),
            )
            .order_by(CryptoAsset.id, ranked.c.rank)
        )

        snapshots: "OrderedDict[int, AssetPriceSnapshot]" = OrderedDict()
        for row in result.all():
            snapshot = snapshots.get(row.id)
            if snapshot is None:
                snapshot = AssetPriceSnapshot(
                    id=row.id,
                    name=row.name,
                    symbol=row.symbol,
                    icon_url=row.icon_url,
                )
                snapshots[row.id] = snapshot
            if row.recorded_at is not None:
                snapshot.entries.append(PricePoint(recorded_at=row.recorded_at, price=row.price))

        return list(snapshots.values())
