"""Short-lived in-process cache for read views."""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class ViewCacheService:
    """TTL cache keyed by string.

    Population is not locked: two requests that miss at the same time both
    run the producer and the last one to finish wins. Producers must be
    idempotent reads.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._clock = clock

    def get(self, key: str, ttl_seconds: float) -> Optional[Any]:
        """Return the cached value if it is younger than ttl_seconds."""
        cached = self._entries.get(key)
        if cached is None:
            return None
        stored_at, value = cached
        if self._clock() - stored_at >= ttl_seconds:
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    async def get_or_populate(
        self,
        key: str,
        ttl_seconds: float,
        producer: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached value for key, or produce, store and return it."""
        cached = self.get(key, ttl_seconds)
        if cached is not None:
            logger.debug(f"View cache hit for '{key}'")
            return cached

        logger.debug(f"View cache miss for '{key}', populating")
        value = await producer()
        self.set(key, value)
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or every key when none is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


# Global view cache instance
view_cache = ViewCacheService()
