"""Entry kinds and the tables that hold them.

Each kind of cached record lives in its own table of the persistent tier
and in its own memory map, with its own lifetime.
"""

from enum import Enum
from typing import Dict


class StoreKind(Enum):
    """Kinds of cached records.

    Kinds:
        HISTORICAL: Daily historical weather for a coordinate pair
        ANALYTICS: Derived trends, patterns and statistics for a location

    Examples:
        >>> StoreKind.HISTORICAL.table
        'historical_weather'
    """

    HISTORICAL = "historical"
    ANALYTICS = "analytics"

    @property
    def table(self) -> str:
        """Name of the database table for this kind."""
        return KIND_TO_TABLE[self]


class AnalysisType(str, Enum):
    """Analytics computations that can be cached."""

    TRENDS = "trends"
    PATTERNS = "patterns"
    STATISTICS = "statistics"


class TimeRange(str, Enum):
    """Windows over which analytics are computed."""

    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"
    YEAR = "1y"
    CUSTOM = "custom"


# Single source of truth for table names
KIND_TO_TABLE: Dict[StoreKind, str] = {
    StoreKind.HISTORICAL: "historical_weather",
    StoreKind.ANALYTICS: "weather_analytics",
}
