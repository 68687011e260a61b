from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class PlatformKind(str, Enum):
    OPENCTI = "opencti"
    OPENAEV = "openaev"


class OpenCTIType(str, Enum):
    # Vulnerability is not cached; CVEs are looked up live.
    THREAT_ACTOR_GROUP = "Threat-Actor-Group"
    THREAT_ACTOR_INDIVIDUAL = "Threat-Actor-Individual"
    INTRUSION_SET = "Intrusion-Set"
    CAMPAIGN = "Campaign"
    INCIDENT = "Incident"
    MALWARE = "Malware"
    ATTACK_PATTERN = "Attack-Pattern"
    SECTOR = "Sector"
    ORGANIZATION = "Organization"
    INDIVIDUAL = "Individual"
    EVENT = "Event"
    COUNTRY = "Country"
    REGION = "Region"
    CITY = "City"
    ADMINISTRATIVE_AREA = "Administrative-Area"
    POSITION = "Position"


class OpenAEVType(str, Enum):
    ASSET = "Asset"
    ASSET_GROUP = "AssetGroup"
    TEAM = "Team"
    PLAYER = "Player"
    ATTACK_PATTERN = "AttackPattern"
    FINDING = "Finding"


_TYPES_BY_KIND: Dict[PlatformKind, Tuple[str, ...]] = {
    PlatformKind.OPENCTI: tuple(t.value for t in OpenCTIType),
    PlatformKind.OPENAEV: tuple(t.value for t in OpenAEVType),
}


def entity_types_for(kind: PlatformKind | str) -> Tuple[str, ...]:
    """Fixed, ordered bucket keys for a platform kind."""
    return _TYPES_BY_KIND[PlatformKind(kind)]


# -----------------------------------------------------------------------------
# Entities & snapshots
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class CachedEntity:
    id: str
    name: str
    entity_type: str
    aliases: Tuple[str, ...] = ()
    external_id: Optional[str] = None  # e.g. "T1059"; exempt from min length
    platform_id: Optional[str] = None

    def __post_init__(self):
        # accept any iterable of aliases, store an immutable tuple
        object.__setattr__(
            self, "aliases", tuple(a for a in (self.aliases or ()) if a)
        )

    def minimal(self, max_aliases: int) -> "CachedEntity":
        """id/name/type plus the first few aliases; nothing else."""
        return CachedEntity(
            id=self.id,
            name=self.name,
            entity_type=self.entity_type,
            aliases=self.aliases[: max(0, int(max_aliases))],
            platform_id=self.platform_id,
        )

    def with_platform(self, platform_id: str) -> "CachedEntity":
        if self.platform_id == platform_id:
            return self
        return replace(self, platform_id=platform_id)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.entity_type,
        }
        if self.aliases:
            d["aliases"] = list(self.aliases)
        if self.external_id:
            d["external_id"] = self.external_id
        if self.platform_id:
            d["platform_id"] = self.platform_id
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CachedEntity":
        return cls(
            id=str(d["id"]),
            name=str(d.get("name") or ""),
            entity_type=str(d["type"]),
            aliases=tuple(str(a) for a in d.get("aliases") or ()),
            external_id=d.get("external_id") or None,
            platform_id=d.get("platform_id") or None,
        )


@dataclass
class PlatformSnapshot:
    """
    One platform's cached entities. Every bucket of the platform kind is
    always present (possibly empty); unknown bucket keys are rejected.
    """

    platform_id: str
    kind: PlatformKind
    timestamp: float
    last_refresh: float
    entities: Dict[str, List[CachedEntity]] = field(default_factory=dict)

    def __post_init__(self):
        self.kind = PlatformKind(self.kind)
        allowed = entity_types_for(self.kind)
        unknown = set(self.entities) - set(allowed)
        if unknown:
            raise ValueError(
                f"unknown entity types for {self.kind.value}: {sorted(unknown)}"
            )
        self.entities = {t: list(self.entities.get(t) or []) for t in allowed}

    @classmethod
    def empty(
        cls, platform_id: str, kind: PlatformKind | str, now: float
    ) -> "PlatformSnapshot":
        return cls(
            platform_id=platform_id,
            kind=PlatformKind(kind),
            timestamp=now,
            last_refresh=now,
        )

    def replace_bucket(
        self, type_key: str, entities: Iterable[CachedEntity]
    ) -> None:
        if type_key not in self.entities:
            raise ValueError(
                f"{type_key!r} is not a cached type for {self.kind.value}"
            )
        self.entities[type_key] = [
            e.with_platform(self.platform_id) for e in entities
        ]

    def upsert(self, entity: CachedEntity) -> bool:
        """
        Insert or replace (by id) within the entity's bucket.
        Returns False when the entity's type is not cached for this kind.
        """
        bucket = self.entities.get(entity.entity_type)
        if bucket is None:
            return False
        entity = entity.with_platform(self.platform_id)
        for i, existing in enumerate(bucket):
            if existing.id == entity.id:
                bucket[i] = entity
                return True
        bucket.append(entity)
        return True

    def total(self) -> int:
        return sum(len(v) for v in self.entities.values())

    def counts_by_type(self) -> Dict[str, int]:
        return {t: len(v) for t, v in self.entities.items()}

    def copy(self) -> "PlatformSnapshot":
        return PlatformSnapshot(
            platform_id=self.platform_id,
            kind=self.kind,
            timestamp=self.timestamp,
            last_refresh=self.last_refresh,
            entities={t: list(v) for t, v in self.entities.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform_id": self.platform_id,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
            "last_refresh": self.last_refresh,
            "entities": {
                t: [e.to_dict() for e in v] for t, v in self.entities.items()
            },
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PlatformSnapshot":
        kind = PlatformKind(d["kind"])
        allowed = set(entity_types_for(kind))
        raw = d.get("entities") or {}
        # lenient on read: buckets written by other versions are skipped
        entities = {
            t: [CachedEntity.from_dict(e) for e in items or []]
            for t, items in raw.items()
            if t in allowed
        }
        return cls(
            platform_id=str(d["platform_id"]),
            kind=kind,
            timestamp=float(d["timestamp"]),
            last_refresh=float(d.get("last_refresh", d["timestamp"])),
            entities=entities,
        )


@dataclass
class MultiPlatformCache:
    platforms: Dict[str, PlatformSnapshot] = field(default_factory=dict)

    def copy(self) -> "MultiPlatformCache":
        return MultiPlatformCache(
            platforms={k: v.copy() for k, v in self.platforms.items()}
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platforms": {k: v.to_dict() for k, v in self.platforms.items()}
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MultiPlatformCache":
        out: Dict[str, PlatformSnapshot] = {}
        platforms = d.get("platforms") or {}
        if not isinstance(platforms, dict):
            return cls(platforms=out)
        for pid, rec in platforms.items():
            try:
                out[pid] = PlatformSnapshot.from_dict(rec)
            except (AttributeError, KeyError, TypeError, ValueError):
                continue
        return cls(platforms=out)


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------
class SaveStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    DROPPED = "dropped"


@dataclass(frozen=True)
class SaveResult:
    status: SaveStatus
    reason: str = ""

    @classmethod
    def ok(cls) -> "SaveResult":
        return cls(SaveStatus.OK)

    @classmethod
    def degraded(cls, reason: str) -> "SaveResult":
        return cls(SaveStatus.DEGRADED, reason)

    @classmethod
    def dropped(cls, reason: str) -> "SaveResult":
        return cls(SaveStatus.DROPPED, reason)

    @property
    def persisted(self) -> bool:
        return self.status != SaveStatus.DROPPED


@dataclass(frozen=True)
class CacheStats:
    total: int
    by_type: Dict[str, int]
    age: float
    is_expired: bool
    platform_count: Optional[int] = None


@dataclass(frozen=True)
class StorageUsage:
    used: int
    quota: Optional[int]
    percentage: float


@dataclass(frozen=True)
class RefreshOutcome:
    platform_id: str
    total: int
    failed_types: Tuple[str, ...] = ()
    save: Optional[SaveResult] = None
    attempted_types: int = 0

    @property
    def success(self) -> bool:
        # at least some entities and not every bucket failed
        return self.total > 0 and len(self.failed_types) < self.attempted_types
