from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from ..config import (
    CACHE_KEY,
    MAX_ENTITIES_PER_TYPE,
    MINIMAL_ALIASES,
    MINIMAL_ENTITIES_PER_TYPE,
    NEAR_QUOTA_RATIO,
)
from ..core.contracts import (
    MultiPlatformCache,
    PlatformKind,
    PlatformSnapshot,
    SaveResult,
    StorageUsage,
)
from ..core.errors import QuotaExceededError, StorageError
from ..core.interfaces import KeyValueStore

log = logging.getLogger(__name__)

# All platform snapshots live in ONE record (self.key) of the key-value store.
# Every read-modify-write of that record runs under self._lock, so this object
# is the single writer of the aggregate: two refreshes racing on different
# platforms (or on two buckets of one platform) cannot drop each other's
# update. The lock is re-entrant so mutate() can call the save ladder.
#
# Save ladder on quota pressure:
#   1. full snapshot, each bucket trimmed to the kind's cap (newest kept)
#   2. minimal snapshot (id/name/type/first aliases, smaller cap)
#   3. drop the platform from the aggregate, warn once


def _tail(items: List, cap: Optional[int]) -> List:
    """Keep at most `cap` items, discarding the oldest (head) ones."""
    if cap is None or len(items) <= cap:
        return list(items)
    return list(items[len(items) - max(0, cap) :])


class CacheStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        key: str = CACHE_KEY,
        caps: Optional[Dict[PlatformKind, int]] = None,
        minimal_cap: int = MINIMAL_ENTITIES_PER_TYPE,
        minimal_aliases: int = MINIMAL_ALIASES,
    ) -> None:
        self.kv = kv
        self.key = key
        self.caps: Dict[PlatformKind, int] = dict(
            caps if caps is not None else MAX_ENTITIES_PER_TYPE
        )
        self.minimal_cap = int(minimal_cap)
        self.minimal_aliases = int(minimal_aliases)
        self._lock = threading.RLock()
        self._loaded = False
        self._mem = MultiPlatformCache()
        self._quota_warned: set[str] = set()

    # ------------------------------------------------------------------
    # record I/O
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            raw = self.kv.get(self.key)
            if raw:
                try:
                    data = json.loads(raw.decode("utf-8"))
                    if not isinstance(data, dict):
                        raise ValueError(
                            f"expected an object, got {type(data).__name__}"
                        )
                    self._mem = MultiPlatformCache.from_dict(data)
                except (UnicodeDecodeError, ValueError) as e:
                    log.warning(
                        "cache record %r is unreadable (%s); starting empty",
                        self.key,
                        e,
                    )
                    self._mem = MultiPlatformCache()
            self._loaded = True

    def _write(self, aggregate: MultiPlatformCache) -> None:
        payload = json.dumps(
            aggregate.to_dict(), ensure_ascii=False, separators=(",", ":")
        ).encode("utf-8")
        self.kv.set(self.key, payload)
        # only reflect what was actually persisted
        self._mem = aggregate

    def _with(
        self, platform_id: str, snapshot: Optional[PlatformSnapshot]
    ) -> MultiPlatformCache:
        platforms = {
            k: v for k, v in self._mem.platforms.items() if k != platform_id
        }
        if snapshot is not None:
            platforms[platform_id] = snapshot
        return MultiPlatformCache(platforms=platforms)

    # ------------------------------------------------------------------
    # shaping
    # ------------------------------------------------------------------
    def trimmed(self, snapshot: PlatformSnapshot) -> PlatformSnapshot:
        cap = self.caps.get(snapshot.kind)
        return PlatformSnapshot(
            platform_id=snapshot.platform_id,
            kind=snapshot.kind,
            timestamp=snapshot.timestamp,
            last_refresh=snapshot.last_refresh,
            entities={t: _tail(v, cap) for t, v in snapshot.entities.items()},
        )

    def minimal(self, snapshot: PlatformSnapshot) -> PlatformSnapshot:
        return PlatformSnapshot(
            platform_id=snapshot.platform_id,
            kind=snapshot.kind,
            timestamp=snapshot.timestamp,
            last_refresh=snapshot.last_refresh,
            entities={
                t: [
                    e.minimal(self.minimal_aliases)
                    for e in _tail(v, self.minimal_cap)
                ]
                for t, v in snapshot.entities.items()
            },
        )

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def save(self, snapshot: PlatformSnapshot) -> SaveResult:
        """
        Persist one platform's snapshot inside the aggregate record.
        Quota failures walk the degrade ladder and never raise; other
        StorageErrors propagate.
        """
        with self._lock:
            self._load()
            return self._save_locked(snapshot)

    def _save_locked(self, snapshot: PlatformSnapshot) -> SaveResult:
        pid = snapshot.platform_id

        try:
            self._write(self._with(pid, self.trimmed(snapshot)))
            self._quota_warned.discard(pid)
            return SaveResult.ok()
        except QuotaExceededError as e:
            full_err = e

        log.info(
            "[%s] full save over quota (%s); retrying with minimal snapshot",
            pid,
            full_err,
        )
        try:
            self._write(self._with(pid, self.minimal(snapshot)))
            return SaveResult.degraded(f"full save over quota: {full_err}")
        except QuotaExceededError as e:
            minimal_err = e

        reason = f"minimal save over quota: {minimal_err}"
        try:
            self._write(self._with(pid, None))
        except QuotaExceededError as e:
            reason = f"{reason}; aggregate without platform over quota: {e}"

        if pid not in self._quota_warned:
            self._quota_warned.add(pid)
            log.warning(
                "[%s] storage quota exhausted, entity cache dropped (%s)",
                pid,
                reason,
            )
        else:
            log.debug("[%s] entity cache dropped again (%s)", pid, reason)
        return SaveResult.dropped(reason)

    def mutate(
        self,
        platform_id: str,
        kind: PlatformKind,
        fn: Callable[[PlatformSnapshot], Optional[bool]],
        *,
        now: float,
    ) -> Optional[SaveResult]:
        """
        Load (or create) a platform snapshot, apply `fn` to a working copy and
        save it, all in one critical section. `fn` returning False means
        "nothing changed"; then nothing is written and None is returned.
        """
        with self._lock:
            self._load()
            current = self._mem.platforms.get(platform_id)
            if current is not None and current.kind == PlatformKind(kind):
                work = current.copy()
            else:
                work = PlatformSnapshot.empty(platform_id, kind, now)
            if fn(work) is False:
                return None
            return self._save_locked(work)

    def load(self, platform_id: str) -> Optional[PlatformSnapshot]:
        with self._lock:
            self._load()
            snap = self._mem.platforms.get(platform_id)
            return snap.copy() if snap is not None else None

    def load_all(self) -> MultiPlatformCache:
        with self._lock:
            self._load()
            return self._mem.copy()

    def platform_ids(self) -> List[str]:
        with self._lock:
            self._load()
            return list(self._mem.platforms)

    def remove(self, platform_id: str) -> bool:
        with self._lock:
            self._load()
            if platform_id not in self._mem.platforms:
                return False
            self._write(self._with(platform_id, None))
            return True

    def retain(self, valid_ids: Iterable[str]) -> List[str]:
        """Drop every platform not in `valid_ids`; return the removed ids."""
        keep = set(valid_ids)
        with self._lock:
            self._load()
            removed = [pid for pid in self._mem.platforms if pid not in keep]
            if removed:
                self._write(
                    MultiPlatformCache(
                        platforms={
                            k: v
                            for k, v in self._mem.platforms.items()
                            if k in keep
                        }
                    )
                )
            return removed

    def clear(self) -> None:
        with self._lock:
            self._write(MultiPlatformCache())
            self._loaded = True
            self._quota_warned.clear()

    # ------------------------------------------------------------------
    # quota introspection
    # ------------------------------------------------------------------
    def usage(self) -> StorageUsage:
        quota = getattr(self.kv, "quota_bytes", None)
        try:
            used = int(self.kv.bytes_in_use())
        except StorageError as e:
            log.debug("bytes_in_use unavailable: %s", e)
            return StorageUsage(used=0, quota=quota, percentage=0.0)
        pct = (used / quota * 100.0) if quota else 0.0
        return StorageUsage(used=used, quota=quota, percentage=round(pct, 2))

    def is_near_quota(self, ratio: float = NEAR_QUOTA_RATIO) -> bool:
        u = self.usage()
        if not u.quota:
            return False
        return u.used >= u.quota * ratio
