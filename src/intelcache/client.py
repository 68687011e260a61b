from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

from .config import (
    CACHE_DURATION_S,
    REFRESH_INTERVAL_S,
    RETRY_INTERVAL_S,
    PlatformConfig,
    load_platforms,
    valid_platform_ids,
)
from .core.contracts import CacheStats, RefreshOutcome, StorageUsage
from .core.interfaces import KeyValueStore, PlatformSource
from .index.names import IndexEntry, NameIndex
from .manager import MultiPlatformCacheManager
from .platforms.factory import make_platform
from .scheduler import RefreshScheduler
from .storage.cache_store import CacheStore
from .storage.kv import FileKeyValueStore


class IntelCache:
    """
    Public façade. Wires configured platforms, the key-value backend, the
    cache store and the manager; does not implement cache logic itself.
    """

    def __init__(
        self,
        platforms: Optional[Sequence[PlatformConfig]] = None,
        *,
        platforms_file: Optional[Path] = None,
        kv: Optional[KeyValueStore] = None,
        cache_duration: float = CACHE_DURATION_S,
        refresh_interval: float = REFRESH_INTERVAL_S,
        **platform_kwargs,
    ) -> None:
        self.configs: List[PlatformConfig] = list(
            platforms if platforms is not None else load_platforms(platforms_file)
        )
        self._platform_kwargs = platform_kwargs
        self._sources: Optional[List[PlatformSource]] = None
        self.store = CacheStore(kv if kv is not None else FileKeyValueStore())
        self.manager = MultiPlatformCacheManager(
            self.store,
            cache_duration=cache_duration,
            refresh_interval=refresh_interval,
        )

    # platform clients are built lazily so read-only commands need no token
    def sources(self) -> List[PlatformSource]:
        if self._sources is None:
            self._sources = [
                make_platform(c, **self._platform_kwargs)
                for c in self.configs
                if c.enabled
            ]
        return self._sources

    def source(self, platform_id: str) -> PlatformSource:
        for s in self.sources():
            if s.platform_id == platform_id:
                return s
        raise KeyError(f"platform {platform_id!r} is not configured or disabled")

    def refresh(self, *, force: bool = False) -> bool:
        return self.manager.refresh_all(self.sources(), force=force)

    def refresh_platform(self, platform_id: str) -> RefreshOutcome:
        return self.manager.refresh_platform(self.source(platform_id))

    def cleanup(self) -> List[str]:
        return self.manager.cleanup_orphaned(valid_platform_ids(self.configs))

    def clear(self, platform_id: Optional[str] = None) -> bool:
        if platform_id is None:
            self.manager.clear_all()
            return True
        return self.manager.clear_for_platform(platform_id)

    def stats(self, platform_id: Optional[str] = None) -> Optional[CacheStats]:
        return self.manager.get_stats(platform_id)

    def usage(self) -> StorageUsage:
        return self.store.usage()

    def is_near_quota(self) -> bool:
        return self.store.is_near_quota()

    def name_index(self) -> NameIndex:
        return self.manager.get_name_index()

    def lookup(self, text: str) -> List[IndexEntry]:
        return self.name_index().lookup(text)

    def scheduler(self, *, retry_interval: float = RETRY_INTERVAL_S) -> RefreshScheduler:
        return RefreshScheduler(
            self.manager,
            self.sources,
            refresh_interval=self.manager.refresh_interval,
            retry_interval=retry_interval,
        )
