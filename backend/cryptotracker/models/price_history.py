"""Price history model.

History entries are append-only observations: one row per accepted
(asset, timestamp) pair. Rows are never updated; they only disappear when
the owning asset is deleted.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from .database import Base


class DecimalString(TypeDecorator):
    """Exact decimal stored as text.

    SQLite keeps NUMERIC values as binary floats, so prices are written as
    ``str(Decimal)`` and parsed back into the same Decimal.
    """
    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class PriceHistoryEntry(Base):
    """A single timestamped price observation for an asset."""
    __tablename__ = "crypto_price_history"

    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(
        Integer,
        ForeignKey("crypto_assets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Always stored as UTC
    recorded_at = Column(DateTime(timezone=True), nullable=False)
    price = Column(DecimalString(), nullable=False)

    # Relationships
    asset = relationship("CryptoAsset", back_populates="price_history")

    __table_args__ = (
        Index("ix_crypto_price_history_asset_recorded", "asset_id", "recorded_at"),
    )

    def __repr__(self):
        return f"<PriceHistoryEntry(asset_id={self.asset_id}, recorded_at={self.recorded_at}, price={self.price})>"
