"""Crypto prices router.

Provides endpoints for:
- Triggering a price update from CoinGecko
- Latest price per asset with trend
- Top N coins by latest price with 30-day daily charts
"""

import asyncio
import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import get_session
from ..services.cache import view_cache
from ..services.coingecko import CoinGeckoClient
from ..services.config import CoinGeckoOptions, config_service
from ..services.ingestion import IngestionOutcome, IngestionSummary, PriceIngestionService
from ..services.price_views import CoinChartView, LatestPriceView, PriceViewService

logger = logging.getLogger(__name__)

router = APIRouter()

UPDATE_SUCCESS_MESSAGE = "Cryptocurrency price update completed successfully."
UPDATE_ERROR_MESSAGE = "An unexpected error occurred while updating cryptocurrency prices."
READ_ERROR_MESSAGE = "An unexpected error occurred while processing your request."
CHART_ERROR_MESSAGE = "An unexpected error occurred while processing your request for chart data."

# How often a running update checks whether the client went away
DISCONNECT_POLL_SECONDS = 0.5


class TrendResponse(BaseModel):
    """Trend of the latest price move."""
    direction: str
    percentage_change: Optional[float]


class LatestPriceResponse(BaseModel):
    """Latest price of one asset."""
    name: str
    symbol: str
    current_price: str
    currency: str
    icon_url: str
    last_updated: datetime
    trend: TrendResponse


class PriceDataPointResponse(BaseModel):
    """Daily average price."""
    date: date
    price: float


class CoinChartResponse(BaseModel):
    """Chart data for one coin."""
    coin_name: str
    coin_symbol: str
    price_history: List[PriceDataPointResponse]


class IngestionSummaryResponse(BaseModel):
    """Totals of an ingestion run."""
    outcome: str
    pages_processed: int
    assets_processed: int
    new_assets: int
    price_updates: int


class UpdatePricesResponse(BaseModel):
    """Response of a completed price update."""
    message: str
    summary: IngestionSummaryResponse


def get_coingecko_options() -> CoinGeckoOptions:
    return config_service.get_coingecko_options()


def get_coingecko_client(
    options: CoinGeckoOptions = Depends(get_coingecko_options),
) -> CoinGeckoClient:
    return CoinGeckoClient(options)


def get_ingestion_service(
    session: AsyncSession = Depends(get_session),
    client: CoinGeckoClient = Depends(get_coingecko_client),
    options: CoinGeckoOptions = Depends(get_coingecko_options),
) -> PriceIngestionService:
    return PriceIngestionService(session, client, options)


def get_price_view_service(
    session: AsyncSession = Depends(get_session),
    options: CoinGeckoOptions = Depends(get_coingecko_options),
) -> PriceViewService:
    return PriceViewService(
        session,
        quote_currency=options.vs_currency,
        cache=view_cache,
        cache_ttl_seconds=config_service.latest_prices_ttl_seconds,
    )


def _to_latest_price_response(view: LatestPriceView) -> LatestPriceResponse:
    change = view.trend.percentage_change
    return LatestPriceResponse(
        name=view.name,
        symbol=view.symbol,
        current_price=view.current_price,
        currency=view.currency,
        icon_url=view.icon_url,
        last_updated=view.last_updated,
        trend=TrendResponse(
            direction=view.trend.direction.value,
            percentage_change=float(change) if change is not None else None,
        ),
    )


def _to_chart_response(view: CoinChartView) -> CoinChartResponse:
    return CoinChartResponse(
        coin_name=view.coin_name,
        coin_symbol=view.coin_symbol,
        price_history=[
            PriceDataPointResponse(date=point.date, price=float(point.price))
            for point in view.price_history
        ],
    )


def _to_summary_response(summary: IngestionSummary) -> IngestionSummaryResponse:
    return IngestionSummaryResponse(
        outcome=summary.outcome.value,
        pages_processed=summary.pages_processed,
        assets_processed=summary.assets_processed,
        new_assets=summary.new_assets,
        price_updates=summary.price_updates,
    )


async def _cancel_on_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    """Set cancel_event once the client disconnects."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.warning("Client disconnected, cancelling price update")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post(
    "/update-prices",
    response_model=UpdatePricesResponse,
    responses={204: {"description": "Update cancelled"}},
)
async def update_prices(
    request: Request,
    service: PriceIngestionService = Depends(get_ingestion_service),
):
    """Fetch prices from CoinGecko and store new observations."""
    logger.info("Attempting to initiate cryptocurrency price update")

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_cancel_on_disconnect(request, cancel_event))
    try:
        summary = await service.update_prices(cancel_event)
    except Exception as e:
        logger.error(f"{UPDATE_ERROR_MESSAGE} {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=UPDATE_ERROR_MESSAGE,
        )
    finally:
        watcher.cancel()

    if summary.outcome == IngestionOutcome.CANCELLED:
        logger.warning("Price update operation was cancelled")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    if summary.outcome == IngestionOutcome.FAILED:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=UPDATE_ERROR_MESSAGE,
        )

    return UpdatePricesResponse(
        message=UPDATE_SUCCESS_MESSAGE,
        summary=_to_summary_response(summary),
    )


@router.get("/latest-prices", response_model=List[LatestPriceResponse])
async def get_latest_prices(
    service: PriceViewService = Depends(get_price_view_service),
):
    """Latest stored price and trend for every asset."""
    logger.info("Request received for latest crypto prices")

    try:
        views = await service.get_latest_prices()
    except Exception as e:
        logger.error(f"Error while fetching latest crypto prices: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=READ_ERROR_MESSAGE,
        )

    logger.info(f"Retrieved {len(views)} latest crypto prices")
    return [_to_latest_price_response(view) for view in views]


@router.get("/top-coins-by-price-chart/{count}", response_model=List[CoinChartResponse])
async def get_top_coins_by_price_chart(
    count: int,
    service: PriceViewService = Depends(get_price_view_service),
):
    """Top ``count`` coins by latest price with 30 days of daily averages."""
    logger.info(f"Request received for top {count} coins by price chart data")

    if count < 1:
        logger.warning(f"Invalid count parameter: {count}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Count must be a positive integer.",
        )

    try:
        charts = await service.get_top_coins_by_price(count)
    except Exception as e:
        logger.error(f"Error while fetching top {count} coins chart data: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=CHART_ERROR_MESSAGE,
        )

    return [_to_chart_response(chart) for chart in charts]
