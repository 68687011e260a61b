from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from .contracts import CachedEntity, PlatformKind

if TYPE_CHECKING:
    from ..fetch.paginator import EntityKind


class PlatformSource(Protocol):
    """
    Unified remote platform surface. `search` returns a page envelope:
    {"content": [...], "totalPages": int, "totalElements": int}.
    """

    platform_id: str
    kind: PlatformKind

    def search(
        self, kind: "EntityKind", page: int, page_size: int
    ) -> Dict[str, Any]: ...

    def entity_kinds(self) -> List["EntityKind"]: ...

    def to_cached_entity(
        self, type_key: str, raw: Dict[str, Any]
    ) -> Optional[CachedEntity]: ...


class KeyValueStore(Protocol):
    """
    Persistence primitive. `set` raises QuotaExceededError when the write
    would exceed `quota_bytes` (None = unlimited).
    """

    quota_bytes: Optional[int]

    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, data: bytes) -> None: ...

    def remove(self, key: str) -> None: ...

    def bytes_in_use(self) -> int: ...
