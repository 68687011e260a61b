"""
Core exports for intelcache.
"""

from .contracts import (
    CachedEntity,
    CacheStats,
    MultiPlatformCache,
    OpenAEVType,
    OpenCTIType,
    PlatformKind,
    PlatformSnapshot,
    RefreshOutcome,
    SaveResult,
    SaveStatus,
    StorageUsage,
    entity_types_for,
)
from .errors import (
    ConfigError,
    FetchError,
    IntelCacheError,
    QuotaExceededError,
    StorageError,
)
from .interfaces import KeyValueStore, PlatformSource

__all__ = [
    "PlatformKind",
    "OpenCTIType",
    "OpenAEVType",
    "entity_types_for",
    "CachedEntity",
    "PlatformSnapshot",
    "MultiPlatformCache",
    "SaveStatus",
    "SaveResult",
    "CacheStats",
    "StorageUsage",
    "RefreshOutcome",
    "IntelCacheError",
    "ConfigError",
    "FetchError",
    "StorageError",
    "QuotaExceededError",
    "PlatformSource",
    "KeyValueStore",
]
