"""Two-tier cache for historical weather data.

This module provides a memory tier backed by an optional on-disk tier, with
per-kind lifetimes and lazy plus periodic expiry.

Key components:
- CacheManager: Domain-level cache interface
- CacheStore: Generic two-tier TTL store
- CacheConfig: Configuration management
- CacheSweeper: Periodic expiry sweeps
"""

from weathercache.cache.cleanup import CacheSweeper
from weathercache.cache.config import CacheConfig
from weathercache.cache.manager import (
    CacheManager,
    CacheStats,
    get_cache_manager,
    reset_cache_manager,
)
from weathercache.cache.store import CacheEntry, CacheStore
from weathercache.errors import (
    CacheClosedError,
    CacheError,
    CacheLockError,
    CachePermissionError,
)

__all__ = [
    "CacheManager",
    "CacheStats",
    "CacheStore",
    "CacheEntry",
    "CacheConfig",
    "CacheSweeper",
    "CacheError",
    "CacheClosedError",
    "CacheLockError",
    "CachePermissionError",
    "get_cache_manager",
    "reset_cache_manager",
]
