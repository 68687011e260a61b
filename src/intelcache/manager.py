from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .config import CACHE_DURATION_S, MAX_WORKERS, REFRESH_INTERVAL_S
from .core.contracts import (
    CachedEntity,
    CacheStats,
    MultiPlatformCache,
    PlatformKind,
    PlatformSnapshot,
    RefreshOutcome,
    SaveResult,
    entity_types_for,
)
from .core.errors import StorageError
from .core.interfaces import PlatformSource
from .fetch.paginator import EntityKind, PaginatedFetcher
from .index.names import NameIndex, NameIndexBuilder
from .storage.cache_store import CacheStore

log = logging.getLogger(__name__)

# how long a forced refresh waits for a running one before going ahead anyway
FORCE_WAIT_S = 30.0


class MultiPlatformCacheManager:
    """
    Expiry / refresh policy and lifecycle hygiene over a CacheStore.

    Nothing here raises on persistence trouble: quota pressure walks the
    store's degrade ladder, any other StorageError is logged and reported as
    a dropped save. A missing snapshot is a normal state meaning "fetch me".
    """

    def __init__(
        self,
        store: CacheStore,
        cache_duration: float = CACHE_DURATION_S,
        refresh_interval: float = REFRESH_INTERVAL_S,
        clock: Callable[[], float] = time.time,
        fetcher: Optional[PaginatedFetcher] = None,
        max_workers: int = MAX_WORKERS,
        index_builder: Optional[NameIndexBuilder] = None,
    ) -> None:
        self.store = store
        self.cache_duration = float(cache_duration)
        self.refresh_interval = float(refresh_interval)
        self.clock = clock
        self.fetcher = fetcher or PaginatedFetcher()
        self.max_workers = max(1, int(max_workers))
        self.index_builder = index_builder or NameIndexBuilder()

        self._state = threading.Condition()
        self._active = 0
        self._last_all_ok = False

    # ------------------------------------------------------------------
    # policy
    # ------------------------------------------------------------------
    def _snapshot(self, platform_id: str) -> Optional[PlatformSnapshot]:
        try:
            return self.store.load(platform_id)
        except StorageError as e:
            log.warning("[%s] reading cache failed: %s", platform_id, e)
            return None

    def _aggregate(self) -> MultiPlatformCache:
        try:
            return self.store.load_all()
        except StorageError as e:
            log.warning("reading cache failed: %s", e)
            return MultiPlatformCache()

    def is_expired(self, platform_id: str) -> bool:
        snap = self._snapshot(platform_id)
        if snap is None:
            return True
        return self.clock() - snap.timestamp > self.cache_duration

    def should_refresh(self, platform_id: str) -> bool:
        snap = self._snapshot(platform_id)
        if snap is None:
            return True
        return self.clock() - snap.last_refresh > self.refresh_interval

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def _guarded(self, what: str, fn: Callable[[], Optional[SaveResult]]):
        try:
            return fn()
        except StorageError as e:
            log.warning("%s failed: %s", what, e)
            return SaveResult.dropped(f"{type(e).__name__}: {e}")

    def update_for_type(
        self,
        platform_id: str,
        kind: PlatformKind,
        type_key: str,
        entities: Iterable[CachedEntity],
    ) -> SaveResult:
        """
        Replace one type bucket of a platform and persist the whole snapshot.
        Only `last_refresh` moves; `timestamp` keeps the last full rebuild.
        """
        if type_key not in entity_types_for(kind):
            raise ValueError(
                f"{type_key!r} is not a cached type for {PlatformKind(kind).value}"
            )
        items = list(entities)
        now = self.clock()

        def apply(snap: PlatformSnapshot) -> None:
            snap.replace_bucket(type_key, items)
            snap.last_refresh = now

        return self._guarded(
            f"[{platform_id}] update {type_key}",
            lambda: self.store.mutate(platform_id, kind, apply, now=now),
        )

    def add_entity(
        self, platform_id: str, kind: PlatformKind, entity: CachedEntity
    ) -> Optional[SaveResult]:
        """Upsert one entity (e.g. just created remotely). None if its type is not cached."""
        if entity.entity_type not in entity_types_for(kind):
            log.debug(
                "[%s] %s is not cached; skipping add",
                platform_id,
                entity.entity_type,
            )
            return None
        return self._guarded(
            f"[{platform_id}] add {entity.entity_type} {entity.id}",
            lambda: self.store.mutate(
                platform_id,
                kind,
                lambda snap: snap.upsert(entity),
                now=self.clock(),
            ),
        )

    def replace_snapshot(self, snapshot: PlatformSnapshot) -> SaveResult:
        return self._guarded(
            f"[{snapshot.platform_id}] save",
            lambda: self.store.save(snapshot),
        )

    def cleanup_orphaned(self, valid_ids: Iterable[str]) -> List[str]:
        try:
            removed = self.store.retain(valid_ids)
        except StorageError as e:
            log.warning("orphan cleanup failed: %s", e)
            return []
        if removed:
            log.info("removed cache for unconfigured platforms: %s", removed)
        return removed

    def clear_all(self) -> None:
        try:
            self.store.clear()
            log.info("entity cache cleared")
        except StorageError as e:
            log.warning("clearing cache failed: %s", e)

    def clear_for_platform(self, platform_id: str) -> bool:
        try:
            removed = self.store.remove(platform_id)
        except StorageError as e:
            log.warning("[%s] clearing cache failed: %s", platform_id, e)
            return False
        if removed:
            log.info("[%s] entity cache cleared", platform_id)
        return removed

    # ------------------------------------------------------------------
    # refresh
    # ------------------------------------------------------------------
    def _fetch_bucket(
        self, platform: PlatformSource, kind: EntityKind
    ) -> List[CachedEntity]:
        out: List[CachedEntity] = []
        for raw in self.fetcher.fetch_all(platform, kind):
            ent = platform.to_cached_entity(kind.key, raw)
            if ent is not None:
                out.append(ent)
        return out

    def refresh_platform(self, platform: PlatformSource) -> RefreshOutcome:
        """
        Full rebuild of one platform: every type bucket fetched concurrently,
        a failed bucket counts as empty for this cycle.
        """
        pid = platform.platform_id
        allowed = set(entity_types_for(platform.kind))
        kinds = [k for k in platform.entity_kinds() if k.key in allowed]
        buckets: Dict[str, List[CachedEntity]] = {}
        failed: List[str] = []

        log.debug("[%s] refreshing %d entity types", pid, len(kinds))
        if kinds:
            workers = min(self.max_workers, len(kinds))
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix=f"fetch-{pid}"
            ) as pool:
                futures = {
                    pool.submit(self._fetch_bucket, platform, k): k for k in kinds
                }
                for fut in as_completed(futures):
                    k = futures[fut]
                    try:
                        buckets[k.key] = fut.result()
                    except Exception as e:
                        # malformed envelopes included; only this bucket is lost
                        log.warning("[%s] fetching %s failed: %s", pid, k.key, e)
                        failed.append(k.key)
                        buckets[k.key] = []

        now = self.clock()
        snapshot = PlatformSnapshot(
            platform_id=pid,
            kind=platform.kind,
            timestamp=now,
            last_refresh=now,
            entities=buckets,
        )
        save = self.replace_snapshot(snapshot)
        outcome = RefreshOutcome(
            platform_id=pid,
            total=snapshot.total(),
            failed_types=tuple(sorted(failed)),
            save=save,
            attempted_types=len(kinds),
        )
        log.info(
            "[%s] cache refreshed: %d entities (%s)",
            pid,
            outcome.total,
            save.status.value,
        )
        if not outcome.success:
            log.warning(
                "[%s] refresh partially failed: %d/%d types failed, %d entities",
                pid,
                len(failed),
                len(kinds),
                outcome.total,
            )
        return outcome

    def is_refreshing(self) -> bool:
        with self._state:
            return self._active > 0

    def refresh_all(
        self, platforms: Sequence[PlatformSource], force: bool = False
    ) -> bool:
        """
        Refresh every platform due for it (all of them when `force`).
        Returns True when every refreshed platform succeeded.

        A non-forced call while another refresh runs is skipped and answers
        the previous result; a forced one waits for it first.
        """
        if not platforms:
            log.debug("no platforms configured, nothing to refresh")
            self._last_all_ok = True
            return True

        with self._state:
            if self._active and not force:
                log.debug("refresh already in progress, skipping")
                return self._last_all_ok
            if self._active:
                self._state.wait_for(lambda: self._active == 0, timeout=FORCE_WAIT_S)
                if self._active:
                    log.warning("running refresh is taking too long, proceeding anyway")
            self._active += 1

        try:
            due = [p for p in platforms if force or self.should_refresh(p.platform_id)]
            for p in platforms:
                if p not in due:
                    log.debug("[%s] cache is fresh", p.platform_id)

            all_ok = True
            if due:
                with ThreadPoolExecutor(
                    max_workers=min(self.max_workers, len(due)),
                    thread_name_prefix="refresh",
                ) as pool:
                    futures = {pool.submit(self.refresh_platform, p): p for p in due}
                    for fut in as_completed(futures):
                        p = futures[fut]
                        try:
                            ok = fut.result().success
                        except Exception:
                            log.exception("[%s] refresh crashed", p.platform_id)
                            ok = False
                        all_ok = all_ok and ok
        finally:
            with self._state:
                self._active -= 1
                self._state.notify_all()

        if all_ok and not self._last_all_ok:
            log.info("all platform caches are populated")
        self._last_all_ok = all_ok
        return all_ok

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get_stats(self, platform_id: Optional[str] = None) -> Optional[CacheStats]:
        now = self.clock()
        if platform_id is not None:
            snap = self._snapshot(platform_id)
            if snap is None:
                return None
            age = now - snap.timestamp
            return CacheStats(
                total=snap.total(),
                by_type=snap.counts_by_type(),
                age=age,
                is_expired=age > self.cache_duration,
            )

        multi = self._aggregate()
        if not multi.platforms:
            return None
        by_type: Dict[str, int] = {}
        total = 0
        oldest = now
        for snap in multi.platforms.values():
            for t, n in snap.counts_by_type().items():
                by_type[t] = by_type.get(t, 0) + n
                total += n
            oldest = min(oldest, snap.timestamp)
        age = now - oldest
        return CacheStats(
            total=total,
            by_type=by_type,
            age=age,
            is_expired=age > self.cache_duration,
            platform_count=len(multi.platforms),
        )

    def get_name_index(self) -> NameIndex:
        return self.index_builder.build(self._aggregate())
