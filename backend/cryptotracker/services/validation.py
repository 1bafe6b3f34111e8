"""Validation helpers for price ingestion and view derivation.

Pure functions with no I/O. They are shared by the CoinGecko client, the
ingestion service and the price view service.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from .config import ConfigValidationError, ConfigValidationException


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_fetch_config(options) -> None:
    """Validate CoinGecko fetch options.

    Args:
        options: CoinGeckoOptions (or any object with the same attributes)

    Raises:
        ConfigValidationException: listing every missing or invalid option.
    """
    if options is None:
        raise ConfigValidationException([
            ConfigValidationError(path="coingecko", message="Options must be provided")
        ])

    errors: List[ConfigValidationError] = []

    for field_name in ("user_agent", "base_url", "market_data_endpoint", "vs_currency"):
        if _is_blank(getattr(options, field_name, None)):
            errors.append(ConfigValidationError(
                path=f"coingecko.{field_name}",
                message=f"{field_name} must be configured"
            ))

    for field_name in ("per_page", "max_page"):
        value = getattr(options, field_name, None)
        if not _is_positive_int(value):
            errors.append(ConfigValidationError(
                path=f"coingecko.{field_name}",
                message=f"{field_name} must be a positive integer, got {value!r}"
            ))

    if errors:
        raise ConfigValidationException(errors)


def has_retrieved_records(records: Optional[Sequence[Any]]) -> bool:
    """True if a fetch returned a non-empty collection."""
    return records is not None and len(records) > 0


def is_valid_record(record) -> bool:
    """True if the record exists and carries a non-blank external id."""
    if record is None:
        return False
    return not _is_blank(getattr(record, "id", None))


def normalize_to_utc(
    timestamp: Optional[datetime],
    fallback: Optional[datetime] = None,
) -> Optional[datetime]:
    """Return ``timestamp`` as an aware UTC datetime.

    Naive timestamps are taken to be UTC already and are only relabelled.
    Aware timestamps in another zone are converted to the same instant in
    UTC. A missing timestamp yields the (normalized) fallback.
    """
    if timestamp is None:
        if fallback is None:
            return None
        return normalize_to_utc(fallback)

    if timestamp.tzinfo is None or timestamp.tzinfo.utcoffset(timestamp) is None:
        return timestamp.replace(tzinfo=timezone.utc)

    return timestamp.astimezone(timezone.utc)


def is_update_needed(last_known: Optional[datetime], candidate: datetime) -> bool:
    """Decide whether ``candidate`` is a new data point.

    Only a strictly later timestamp counts as new; the price itself is not
    compared, so a repeated timestamp carrying a different price is ignored.
    """
    if last_known is None:
        return True
    return normalize_to_utc(candidate) > normalize_to_utc(last_known)


def has_sufficient_history_for_trend(entries: Optional[Sequence[Any]]) -> bool:
    """True if there is at least one history entry to derive a trend from."""
    return entries is not None and len(entries) > 0
