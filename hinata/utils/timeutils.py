"""Timezone helpers. All stored timestamps are timezone-aware UTC."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive datetimes are interpreted as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def hour_bucket(value: datetime) -> str:
    """Hour-granularity index key, e.g. ``2024-03-01-14``."""
    return ensure_utc(value).strftime("%Y-%m-%d-%H")
