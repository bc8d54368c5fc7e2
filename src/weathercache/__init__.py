"""weathercache: Two-tier caching and retry for historical weather lookups."""

__version__ = "0.1.0"

from weathercache.cache import CacheConfig, CacheManager, get_cache_manager
from weathercache.errors import HistoricalWeatherError, classify_error, is_retryable
from weathercache.fetch import CachedFetcher
from weathercache.retry import RetryConfig, with_retry

__all__ = [
    "CacheConfig",
    "CacheManager",
    "CachedFetcher",
    "HistoricalWeatherError",
    "RetryConfig",
    "classify_error",
    "get_cache_manager",
    "is_retryable",
    "with_retry",
    "__version__",
]
