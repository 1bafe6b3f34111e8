# Business Logic Services

from .config import (
    ConfigService,
    config_service,
    configure_logging,
    CoinGeckoOptions,
    ConfigValidationException,
    ConfigValidationError,
)
from .validation import (
    validate_fetch_config,
    has_retrieved_records,
    is_valid_record,
    normalize_to_utc,
    is_update_needed,
    has_sufficient_history_for_trend,
)
from .coingecko import (
    CoinGeckoClient,
    MarketRecord,
    FetchResult,
    FetchStatus,
)
from .asset_cache import (
    AssetCacheEntry,
    build_asset_cache,
)
from .ingestion import (
    PriceIngestionService,
    IngestionOutcome,
    IngestionSummary,
)
from .cache import (
    ViewCacheService,
    view_cache,
)
from .price_views import (
    PriceViewService,
    TrendDirection,
    Trend,
    LatestPriceView,
    CoinChartView,
    PriceDataPoint,
    calculate_trend,
    format_price,
)
from .scheduler import PriceUpdateScheduler

__all__ = [
    # Config
    "ConfigService",
    "config_service",
    "configure_logging",
    "CoinGeckoOptions",
    "ConfigValidationException",
    "ConfigValidationError",
    # Validation
    "validate_fetch_config",
    "has_retrieved_records",
    "is_valid_record",
    "normalize_to_utc",
    "is_update_needed",
    "has_sufficient_history_for_trend",
    # CoinGecko
    "CoinGeckoClient",
    "MarketRecord",
    "FetchResult",
    "FetchStatus",
    # Ingestion
    "AssetCacheEntry",
    "build_asset_cache",
    "PriceIngestionService",
    "IngestionOutcome",
    "IngestionSummary",
    # Views
    "ViewCacheService",
    "view_cache",
    "PriceViewService",
    "TrendDirection",
    "Trend",
    "LatestPriceView",
    "CoinChartView",
    "PriceDataPoint",
    "calculate_trend",
    "format_price",
    # Scheduler
    "PriceUpdateScheduler",
]
