"""Hit/miss bookkeeping for the cache manager."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from weathercache.storage.categories import StoreKind


class CacheStatistics:
    """Per-kind lookup counters.

    Tracks, for each :class:`StoreKind`:
    - cache hits (live entry returned from either tier)
    - cache misses (nothing live found)
    - writes (successful or not, the memory tier was updated)

    Counters live in memory only and reset with :meth:`reset`.
    """

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self.reset()

    def reset(self) -> None:
        """Zero every counter."""
        self._data = {
            "since": datetime.now(timezone.utc).isoformat(),
            "kinds": {
                kind.value: {"hits": 0, "misses": 0, "writes": 0} for kind in StoreKind
            },
        }

    def record_hit(self, kind: StoreKind) -> None:
        self._data["kinds"][kind.value]["hits"] += 1

    def record_miss(self, kind: StoreKind) -> None:
        self._data["kinds"][kind.value]["misses"] += 1

    def record_write(self, kind: StoreKind) -> None:
        self._data["kinds"][kind.value]["writes"] += 1

    def get_stats(self, kind: Optional[StoreKind] = None) -> Dict[str, Any]:
        """Counters for one kind, or totals across kinds.

        Returns:
            Dict with hits, misses, writes and hit_rate
        """
        if kind is not None:
            counters = dict(self._data["kinds"][kind.value])
        else:
            counters = {"hits": 0, "misses": 0, "writes": 0}
            for per_kind in self._data["kinds"].values():
                for name, value in per_kind.items():
                    counters[name] += value

        total_requests = counters["hits"] + counters["misses"]
        counters["hit_rate"] = (
            counters["hits"] / total_requests if total_requests > 0 else 0.0
        )
        counters["since"] = self._data["since"]
        return counters
