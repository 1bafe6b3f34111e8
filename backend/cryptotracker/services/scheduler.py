"""Background scheduler for periodic price ingestion."""

import asyncio
import logging
from typing import Callable, Optional

from .coingecko import CoinGeckoClient
from .config import CoinGeckoOptions
from .ingestion import IngestionSummary, PriceIngestionService

logger = logging.getLogger(__name__)

# Grace period for an in-flight run after stop() is called
STOP_TIMEOUT_SECONDS = 10.0


class PriceUpdateScheduler:
    """Runs an ingestion every ``interval_seconds`` on a fresh session.

    Runs are not serialized against manual triggers; a scheduled run and a
    request to /update-prices may overlap.
    """

    def __init__(
        self,
        interval_seconds: float,
        session_factory: Callable,
        client_factory: Callable[[CoinGeckoOptions], CoinGeckoClient],
        options: CoinGeckoOptions,
    ):
        """Initialize scheduler.

        Args:
            interval_seconds: Pause between runs; 0 disables the scheduler
            session_factory: Callable returning an async session context manager
            client_factory: Callable building a CoinGecko client from options
            options: CoinGecko options shared by every run
        """
        self.interval_seconds = interval_seconds
        self._session_factory = session_factory
        self._client_factory = client_factory
        self.options = options
        self._task: Optional[asyncio.Task] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._running = False
        self.last_summary: Optional[IngestionSummary] = None

    @property
    def enabled(self) -> bool:
        return self.interval_seconds > 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background loop (no-op when disabled or already running)."""
        if not self.enabled or self._running:
            return

        self._running = True
        self._cancel_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Price update scheduler started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the loop, signalling any in-flight run to cancel.

        The run gets STOP_TIMEOUT_SECONDS to wind down before its task is
        cancelled outright.
        """
        self._running = False

        if self._cancel_event:
            self._cancel_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=STOP_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Price update did not stop in time, task cancelled")
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Price update scheduler stopped")

    async def run_once(self) -> IngestionSummary:
        """Run a single ingestion on its own session."""
        client = self._client_factory(self.options)
        async with self._session_factory() as session:
            service = PriceIngestionService(session, client, self.options)
            summary = await service.update_prices(self._cancel_event)
        self.last_summary = summary
        return summary

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduled price update failed: {e}")

            if await self._wait_for_stop():
                break

    async def _wait_for_stop(self) -> bool:
        """Sleep for one interval; True if stop() was called meanwhile."""
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=self.interval_seconds)
            return True
        except asyncio.TimeoutError:
            return False
