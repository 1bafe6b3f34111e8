# Database Models

from .database import (
    Base,
    engine,
    async_session_maker,
    get_session,
    init_db,
    enable_sqlite_foreign_keys,
)
from .asset import CryptoAsset
from .price_history import PriceHistoryEntry

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "get_session",
    "init_db",
    "enable_sqlite_foreign_keys",
    "CryptoAsset",
    "PriceHistoryEntry",
]
