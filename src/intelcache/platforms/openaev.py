from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from ..config import FINDINGS_PAGE_SIZE
from ..core.contracts import CachedEntity, OpenAEVType, PlatformKind
from ..fetch.paginator import EntityKind
from .http import HttpPlatform

# Spring Boot search endpoints; each answers a {"page", "size"} body with
# {"content", "totalPages", "totalElements", ...}.
ENTITY_KINDS: List[EntityKind] = [
    EntityKind(OpenAEVType.ASSET.value, "/api/endpoints/search"),
    EntityKind(OpenAEVType.ASSET_GROUP.value, "/api/asset_groups/search"),
    EntityKind(OpenAEVType.TEAM.value, "/api/teams/search"),
    EntityKind(OpenAEVType.PLAYER.value, "/api/players/search"),
    EntityKind(OpenAEVType.ATTACK_PATTERN.value, "/api/attack_patterns/search"),
    EntityKind(
        OpenAEVType.FINDING.value,
        "/api/findings/search",
        page_size=FINDINGS_PAGE_SIZE,
        distinct=True,
    ),
]

_MIN_IP_LEN = 7  # "1.1.1.1"
_MIN_MAC_LEN = 12


def _asset(raw: Dict[str, Any]) -> Optional[CachedEntity]:
    # The API returns endpoint_* or asset_* field names depending on the route
    endpoint_name = raw.get("endpoint_name")
    asset_name = raw.get("asset_name")
    primary = endpoint_name or asset_name
    asset_id = raw.get("endpoint_id") or raw.get("asset_id")
    if not primary or not asset_id:
        return None

    aliases: List[str] = []
    if (
        asset_name
        and endpoint_name
        and asset_name.lower() != endpoint_name.lower()
    ):
        aliases.append(asset_name)

    hostname = raw.get("endpoint_hostname") or raw.get("asset_hostname")
    if hostname and hostname.lower() != primary.lower():
        aliases.append(hostname)

    for ip in raw.get("endpoint_ips") or raw.get("asset_ips") or []:
        if ip and len(ip) >= _MIN_IP_LEN:
            aliases.append(ip)

    macs = raw.get("endpoint_mac_addresses") or []
    mac = (macs[0] if macs else None) or raw.get("asset_mac_address")
    if mac and len(mac) >= _MIN_MAC_LEN:
        aliases.append(mac)

    return CachedEntity(
        id=str(asset_id),
        name=primary,
        entity_type=OpenAEVType.ASSET.value,
        aliases=aliases,
    )


def _asset_group(raw: Dict[str, Any]) -> Optional[CachedEntity]:
    if not raw.get("asset_group_id") or not raw.get("asset_group_name"):
        return None
    return CachedEntity(
        id=str(raw["asset_group_id"]),
        name=raw["asset_group_name"],
        entity_type=OpenAEVType.ASSET_GROUP.value,
    )


def _team(raw: Dict[str, Any]) -> Optional[CachedEntity]:
    if not raw.get("team_id") or not raw.get("team_name"):
        return None
    return CachedEntity(
        id=str(raw["team_id"]),
        name=raw["team_name"],
        entity_type=OpenAEVType.TEAM.value,
    )


def _player(raw: Dict[str, Any]) -> Optional[CachedEntity]:
    # name or email only; phone numbers match far too much
    full = " ".join(
        x for x in [raw.get("user_firstname"), raw.get("user_lastname")] if x
    ).strip()
    email = raw.get("user_email") or ""
    name = full or email
    if not raw.get("user_id") or not name:
        return None
    aliases = [email] if full and email and email.lower() != full.lower() else []
    return CachedEntity(
        id=str(raw["user_id"]),
        name=name,
        entity_type=OpenAEVType.PLAYER.value,
        aliases=aliases,
    )


def _attack_pattern(raw: Dict[str, Any]) -> Optional[CachedEntity]:
    if not raw.get("attack_pattern_id") or not raw.get("attack_pattern_name"):
        return None
    return CachedEntity(
        id=str(raw["attack_pattern_id"]),
        name=raw["attack_pattern_name"],
        entity_type=OpenAEVType.ATTACK_PATTERN.value,
        external_id=raw.get("attack_pattern_external_id") or None,
    )


def _finding(raw: Dict[str, Any]) -> Optional[CachedEntity]:
    if not raw.get("finding_id") or not raw.get("finding_value"):
        return None
    return CachedEntity(
        id=str(raw["finding_id"]),
        name=str(raw["finding_value"]),
        entity_type=OpenAEVType.FINDING.value,
    )


_MAPPERS: Dict[str, Callable[[Dict[str, Any]], Optional[CachedEntity]]] = {
    OpenAEVType.ASSET.value: _asset,
    OpenAEVType.ASSET_GROUP.value: _asset_group,
    OpenAEVType.TEAM.value: _team,
    OpenAEVType.PLAYER.value: _player,
    OpenAEVType.ATTACK_PATTERN.value: _attack_pattern,
    OpenAEVType.FINDING.value: _finding,
}


class OpenAEVPlatform(HttpPlatform):
    """
    OpenAEV REST client.

    Notes:
      - Bearer token auth.
      - Every search endpoint is page-indexed from 0.
      - Findings are requested with ?distinct=true and a smaller page.
    """

    kind = PlatformKind.OPENAEV

    def entity_kinds(self) -> List[EntityKind]:
        return list(ENTITY_KINDS)

    def search(
        self, kind: EntityKind, page: int, page_size: int
    ) -> Dict[str, Any]:
        params = {"distinct": "true"} if kind.distinct else None
        data = self._post(
            kind.endpoint, {"page": int(page), "size": int(page_size)}, params
        )
        if not isinstance(data, dict):
            data = {}
        return {
            "content": data.get("content") or [],
            "totalPages": data.get("totalPages"),
            "totalElements": data.get("totalElements", 0),
        }

    def to_cached_entity(
        self, type_key: str, raw: Dict[str, Any]
    ) -> Optional[CachedEntity]:
        mapper = _MAPPERS.get(type_key)
        if mapper is None or not isinstance(raw, dict):
            return None
        ent = mapper(raw)
        return ent.with_platform(self.platform_id) if ent else None
