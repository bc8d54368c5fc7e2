"""Persistent tier for the weather cache.

This module provides the SQLite-backed backend and the definitions of the
record kinds and tables it stores.
"""

from weathercache.storage.backend import SCHEMA_VERSION, PersistentBackend, StoredRow
from weathercache.storage.categories import (
    KIND_TO_TABLE,
    AnalysisType,
    StoreKind,
    TimeRange,
)

__all__ = [
    "PersistentBackend",
    "StoredRow",
    "SCHEMA_VERSION",
    "StoreKind",
    "AnalysisType",
    "TimeRange",
    "KIND_TO_TABLE",
]
