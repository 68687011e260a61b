from __future__ import annotations

"""
names.py
--------
Flattens every cached platform snapshot into one lower-cased
name -> candidates index for literal text matching.

Short and generic strings are left out: a scanner running word-boundary
matches over arbitrary page text would otherwise drown in false positives.
External short codes (e.g. ATT&CK ids like "T1059") are exact enough to be
indexed regardless of length.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional

from ..config import MIN_NAME_LENGTH
from ..core.contracts import CachedEntity, MultiPlatformCache

# Generic words that recur as aliases across unrelated seed data
STOP_TERMS: FrozenSet[str] = frozenset(
    {
        "page",
        "test",
        "demo",
        "example",
        "sample",
        "default",
        "unknown",
        "none",
        "null",
        "undefined",
        "true",
        "false",
    }
)


@dataclass(frozen=True)
class IndexEntry:
    entity: CachedEntity
    platform_id: str


class NameIndex:
    """
    Derived lookup structure; rebuilt from the cache, never persisted.
    A hit is a candidate set: one string may name entities of several
    types or platforms.
    """

    def __init__(self, entries: Optional[Dict[str, List[IndexEntry]]] = None):
        self._entries: Dict[str, List[IndexEntry]] = entries or {}

    def lookup(self, text: str) -> List[IndexEntry]:
        return list(self._entries.get((text or "").strip().lower(), ()))

    def __contains__(self, text: object) -> bool:
        if not isinstance(text, str):
            return False
        return text.strip().lower() in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys_longest_first(self) -> List[str]:
        """Scan order for detectors: longer names win over their substrings."""
        return sorted(self._entries, key=lambda k: (-len(k), k))


class NameIndexBuilder:
    def __init__(
        self,
        *,
        min_length: int = MIN_NAME_LENGTH,
        stop_terms: Iterable[str] = STOP_TERMS,
    ) -> None:
        self.min_length = int(min_length)
        self.stop_terms = frozenset(s.lower() for s in stop_terms)

    def accepts(self, text: str) -> bool:
        """Length and stop terms are checked on the stripped, lower-cased key."""
        key = (text or "").strip().lower()
        return len(key) >= self.min_length and key not in self.stop_terms

    def build(self, multi: MultiPlatformCache) -> NameIndex:
        index: Dict[str, List[IndexEntry]] = {}

        def _add(key: str, entity: CachedEntity, platform_id: str) -> None:
            bucket = index.setdefault(key, [])
            for e in bucket:
                if e.entity.id == entity.id and e.platform_id == platform_id:
                    return
            bucket.append(IndexEntry(entity=entity, platform_id=platform_id))

        for platform_id, snapshot in multi.platforms.items():
            for entities in snapshot.entities.values():
                for entity in entities:
                    for text in (entity.name, *entity.aliases):
                        if self.accepts(text):
                            _add(text.strip().lower(), entity, platform_id)
                    if entity.external_id:
                        key = entity.external_id.strip().lower()
                        if key:
                            _add(key, entity, platform_id)

        return NameIndex(index)
