"""Crypto asset model."""

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from .database import Base


class CryptoAsset(Base):
    """A tracked crypto asset, keyed by its upstream (CoinGecko) id.

    The asset is the sole owner of its price history: removing an asset
    removes every history row, both through the ORM cascade and through
    the ON DELETE CASCADE foreign key on the history table.
    """
    __tablename__ = "crypto_assets"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False, default="")
    symbol = Column(String(50), nullable=False, default="")
    currency = Column(String(10), nullable=False)  # quote currency, e.g. "usd"
    icon_url = Column(String(500), nullable=False, default="")

    # Relationships
    price_history = relationship(
        "PriceHistoryEntry",
        back_populates="asset",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PriceHistoryEntry.recorded_at",
    )

    def __repr__(self):
        return f"<CryptoAsset(id={self.id}, external_id='{self.external_id}', symbol='{self.symbol}')>"
