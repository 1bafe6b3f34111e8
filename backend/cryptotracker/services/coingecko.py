"""CoinGecko market data client.

Fetches one page of ``/coins/markets`` at a time. Failures never raise:
every call returns a FetchResult whose status tells the caller whether the
page produced records, failed (transport error, timeout, bad status or
malformed body) or was cancelled through the caller's cancel event.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

import aiohttp
from pydantic import BaseModel, ConfigDict, TypeAdapter, model_validator

from .config import CoinGeckoOptions
from .validation import validate_fetch_config

logger = logging.getLogger(__name__)

# Longest body excerpt written to the log on failures
LOG_BODY_LIMIT = 500


class MarketRecord(BaseModel):
    """One entry of the ``/coins/markets`` response.

    Keys are matched case-insensitively and unknown keys are ignored.
    """
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    symbol: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None
    current_price: Optional[Decimal] = None
    last_updated: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _lowercase_keys(cls, data):
        if isinstance(data, dict):
            return {str(key).lower(): value for key, value in data.items()}
        return data


_RECORDS_ADAPTER = TypeAdapter(List[Optional[MarketRecord]])


def parse_market_records(body: Union[bytes, str]) -> List[Optional[MarketRecord]]:
    """Deserialize a markets response body.

    Raises:
        ValueError: if the body is not UTF-8, not JSON or not an array of
            objects (UnicodeDecodeError and ValidationError are ValueErrors).
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    data = json.loads(body, parse_float=Decimal)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    return _RECORDS_ADAPTER.validate_python(data)


class FetchStatus(str, Enum):
    """Outcome of a single page fetch."""
    OK = "ok"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class FetchResult:
    """Result of fetching one page of market data."""
    status: FetchStatus
    records: Optional[List[Optional[MarketRecord]]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, records: List[Optional[MarketRecord]]) -> "FetchResult":
        return cls(status=FetchStatus.OK, records=records)

    @classmethod
    def failed(cls, error: str) -> "FetchResult":
        return cls(status=FetchStatus.FAILED, error=error)

    @classmethod
    def cancelled(cls) -> "FetchResult":
        return cls(status=FetchStatus.CANCELLED)

    @property
    def is_cancelled(self) -> bool:
        return self.status == FetchStatus.CANCELLED


def _truncate(body: bytes) -> str:
    return body[:LOG_BODY_LIMIT].decode("utf-8", errors="replace")


class CoinGeckoClient:
    """Client for the CoinGecko markets endpoint."""

    def __init__(
        self,
        options: CoinGeckoOptions,
        session_factory: Callable[..., aiohttp.ClientSession] = aiohttp.ClientSession,
    ):
        """Initialize the client.

        Args:
            options: Endpoint, currency, paging and user agent settings
            session_factory: Callable returning an aiohttp-compatible session

        Raises:
            ConfigValidationException: If the options are incomplete.
        """
        validate_fetch_config(options)
        self.options = options
        self._session_factory = session_factory
        self._headers = {"User-Agent": options.user_agent}

    def build_url(self, page: int) -> str:
        """Build the request URL for a page."""
        opts = self.options
        return (
            f"{opts.base_url}{opts.market_data_endpoint}"
            f"?vs_currency={opts.vs_currency}&per_page={opts.per_page}&page={page}"
        )

    async def fetch_page(
        self,
        page: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FetchResult:
        """Fetch and deserialize one page of market data.

        Args:
            page: 1-based page number
            cancel_event: Set by the caller to abandon the request

        Returns:
            FetchResult with OK, FAILED or CANCELLED status
        """
        url = self.build_url(page)

        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Request to CoinGecko was cancelled for page {page}")
            return FetchResult.cancelled()

        logger.debug(f"Fetching page {page} from CoinGecko API: {url}")

        try:
            response = await self._request(url, cancel_event)
        except asyncio.TimeoutError as e:
            logger.error(f"Request to CoinGecko timed out for page {page}. URL: {url}")
            return FetchResult.failed(f"timeout: {e}")
        except aiohttp.ClientError as e:
            logger.error(f"Request to CoinGecko failed for page {page}. URL: {url}: {e}")
            return FetchResult.failed(str(e))

        if response is None:
            logger.warning(f"Request to CoinGecko was cancelled for page {page}")
            return FetchResult.cancelled()

        status, body = response
        if not 200 <= status < 300:
            logger.error(
                f"CoinGecko request for page {page} failed with status code {status}. "
                f"Response (truncated): {_truncate(body)}"
            )
            return FetchResult.failed(f"HTTP {status}")

        try:
            records = parse_market_records(body)
        except ValueError as e:
            logger.error(
                f"Failed to deserialize CoinGecko response for page {page}: {e}. "
                f"Content (truncated): {_truncate(body)}"
            )
            return FetchResult.failed(f"malformed response: {e}")

        return FetchResult.ok(records)

    async def _get(self, url: str) -> Tuple[int, bytes]:
        timeout = aiohttp.ClientTimeout(total=self.options.request_timeout_seconds)
        async with self._session_factory(headers=self._headers, timeout=timeout) as session:
            async with session.get(url) as resp:
                body = await resp.read()
                return resp.status, body

    async def _request(
        self,
        url: str,
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[Tuple[int, bytes]]:
        """Run the GET, racing it against the cancel event.

        Returns None when the cancel event won the race.
        """
        if cancel_event is None:
            return await self._get(url)

        request_task = asyncio.ensure_future(self._get(url))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait(
                {request_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_task.cancel()
            abandoned = not request_task.done()
            if abandoned:
                request_task.cancel()

        if abandoned:
            return None
        return request_task.result()
