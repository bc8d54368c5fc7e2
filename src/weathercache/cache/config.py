"""Cache configuration management."""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

DEFAULT_CACHE_DIR = Path.home() / ".weathercache"


@dataclass
class CacheConfig:
    """Configuration for the historical weather cache.

    Attributes:
        persistent: Whether to back the memory tier with the on-disk database.
            When False the cache runs memory-only.
        cache_dir: Directory holding the database and its lock file
        db_filename: Database file name inside ``cache_dir``
        historical_ttl: Lifetime of historical records in seconds (24 hours)
        analytics_ttl: Lifetime of analytics records in seconds (6 hours)
        sweep_interval: Seconds between periodic expiry sweeps (1 hour)
        sweep_batch_size: Rows deleted per sweep transaction
        estimated_entry_bytes: Per-entry size used to estimate on-disk usage
        lock_timeout: Seconds to wait for the schema lock
    """

    persistent: bool = True
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR)
    db_filename: str = "weather_history.db"
    historical_ttl: int = 24 * 60 * 60
    analytics_ttl: int = 6 * 60 * 60
    sweep_interval: int = 60 * 60
    sweep_batch_size: int = 200
    estimated_entry_bytes: int = 1000
    lock_timeout: int = 30

    def __post_init__(self):
        """Normalise cache_dir and reject non-positive lifetimes."""
        if self.cache_dir is None:
            self.cache_dir = DEFAULT_CACHE_DIR
        self.cache_dir = Path(self.cache_dir).expanduser()

        for name in ("historical_ttl", "analytics_ttl", "sweep_interval", "sweep_batch_size"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

    @property
    def db_path(self) -> Path:
        """Full path of the database file."""
        return self.cache_dir / self.db_filename

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from file.

        Args:
            config_path: Path to config file. If None, uses default location.

        Returns:
            CacheConfig instance (defaults if the file does not exist)
        """
        if config_path is None:
            config_path = DEFAULT_CACHE_DIR / "config.json"

        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        if "cache_dir" in data:
            data["cache_dir"] = Path(data["cache_dir"])

        return cls(**data)

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to file.

        Args:
            config_path: Path to config file. If None, uses ``cache_dir/config.json``.
        """
        if config_path is None:
            config_path = self.cache_dir / "config.json"

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        data["cache_dir"] = str(self.cache_dir)

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            WEATHERCACHE_PERSISTENT: Enable the on-disk tier (true/false)
            WEATHERCACHE_DIR: Cache directory path
            WEATHERCACHE_HISTORICAL_TTL: Historical record TTL in seconds
            WEATHERCACHE_ANALYTICS_TTL: Analytics record TTL in seconds
            WEATHERCACHE_SWEEP_INTERVAL: Seconds between expiry sweeps

        Returns:
            CacheConfig instance
        """
        config = cls()

        if os.getenv("WEATHERCACHE_PERSISTENT"):
            config.persistent = os.getenv("WEATHERCACHE_PERSISTENT", "").lower() == "true"

        if os.getenv("WEATHERCACHE_DIR"):
            config.cache_dir = Path(os.getenv("WEATHERCACHE_DIR")).expanduser()

        if os.getenv("WEATHERCACHE_HISTORICAL_TTL"):
            config.historical_ttl = int(os.getenv("WEATHERCACHE_HISTORICAL_TTL"))

        if os.getenv("WEATHERCACHE_ANALYTICS_TTL"):
            config.analytics_ttl = int(os.getenv("WEATHERCACHE_ANALYTICS_TTL"))

        if os.getenv("WEATHERCACHE_SWEEP_INTERVAL"):
            config.sweep_interval = int(os.getenv("WEATHERCACHE_SWEEP_INTERVAL"))

        return config


# Global cache configuration instance
_global_config: Optional[CacheConfig] = None


def get_global_config() -> CacheConfig:
    """Get global cache configuration.

    Returns:
        Global CacheConfig instance
    """
    global _global_config
    if _global_config is None:
        # Config file wins, then env, then defaults
        config_path = DEFAULT_CACHE_DIR / "config.json"
        try:
            if config_path.exists():
                _global_config = CacheConfig.load(config_path)
            else:
                _global_config = CacheConfig.from_env()
        except (OSError, ValueError, TypeError):
            _global_config = CacheConfig.from_env()
    return _global_config


def set_global_config(config: Optional[CacheConfig]) -> None:
    """Set global cache configuration.

    Args:
        config: CacheConfig instance to use globally, or None to reload lazily
    """
    global _global_config
    _global_config = config
