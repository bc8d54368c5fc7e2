"""TTL helpers shared by both cache tiers.

Timestamps are timezone-aware UTC datetimes in memory and float epoch
seconds in the database, so expiry checks on either side agree.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

Number = Union[int, float]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_expiry(created_at: datetime, ttl_seconds: Number) -> datetime:
    """Expiry timestamp for an entry written at ``created_at``.

    Raises:
        ValueError: If ``ttl_seconds`` is not positive, since the entry would
            be born expired
    """
    if ttl_seconds is None or ttl_seconds <= 0:
        raise ValueError(f"TTL must be positive, got {ttl_seconds}")
    return ensure_utc(created_at) + timedelta(seconds=ttl_seconds)


def is_expired(expires_at: datetime, now: Optional[datetime] = None) -> bool:
    """An entry is expired once ``now`` reaches ``expires_at``."""
    now = ensure_utc(now) if now is not None else utcnow()
    return ensure_utc(expires_at) <= now


def to_epoch(value: datetime) -> float:
    return ensure_utc(value).timestamp()


def from_epoch(value: Number) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)
