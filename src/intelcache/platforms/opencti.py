from __future__ import annotations

import math
import threading
from typing import Any, Dict, List, Optional, Tuple

from ..core.contracts import CachedEntity, OpenCTIType, PlatformKind
from ..core.errors import FetchError
from ..fetch.paginator import EntityKind
from .http import HttpPlatform

ENTITY_KINDS: List[EntityKind] = [EntityKind(t.value, t.value) for t in OpenCTIType]

_NAMED = "name\n                aliases"
_NAMED_X = "name\n                x_opencti_aliases"

SDO_QUERY = f"""
query FetchSDOsForCache($types: [String], $first: Int, $after: ID) {{
  stixDomainObjects(types: $types, first: $first, after: $after) {{
    edges {{
      node {{
        id
        entity_type
        ... on ThreatActorGroup {{ {_NAMED} }}
        ... on ThreatActorIndividual {{ {_NAMED} }}
        ... on IntrusionSet {{ {_NAMED} }}
        ... on Campaign {{ {_NAMED} }}
        ... on Incident {{ {_NAMED} }}
        ... on Malware {{ {_NAMED} }}
        ... on Event {{ {_NAMED} }}
        ... on AttackPattern {{ {_NAMED}
                x_mitre_id }}
        ... on Sector {{ {_NAMED_X} }}
        ... on Organization {{ {_NAMED_X} }}
        ... on Individual {{ {_NAMED_X} }}
        ... on Country {{ {_NAMED_X} }}
        ... on Region {{ {_NAMED_X} }}
        ... on City {{ {_NAMED_X} }}
        ... on AdministrativeArea {{ {_NAMED_X} }}
        ... on Position {{ {_NAMED_X} }}
      }}
    }}
    pageInfo {{
      hasNextPage
      endCursor
      globalCount
    }}
  }}
}}
"""


class OpenCTIPlatform(HttpPlatform):
    """
    OpenCTI GraphQL client.

    The API paginates with cursors; search() keeps the page-indexed contract
    by remembering the end cursor of page n so page n+1 can be requested.
    Pages of one kind must therefore be fetched in order (which is what
    PaginatedFetcher does anyway).
    """

    kind = PlatformKind.OPENCTI

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._cursors: Dict[Tuple[str, int], str] = {}
        self._cursor_lock = threading.Lock()

    def entity_kinds(self) -> List[EntityKind]:
        return list(ENTITY_KINDS)

    def _graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        result = self._post("/graphql", {"query": query, "variables": variables})
        if not isinstance(result, dict):
            result = {}
        errors = result.get("errors") or []
        if errors:
            msg = (errors[0] or {}).get("message") or "GraphQL error"
            raise FetchError(f"[{self.platform_id}] {msg}")
        data = result.get("data")
        return data if isinstance(data, dict) else {}

    def search(
        self, kind: EntityKind, page: int, page_size: int
    ) -> Dict[str, Any]:
        page = int(page)
        after: Optional[str] = None
        with self._cursor_lock:
            if page == 0:
                for k in [k for k in self._cursors if k[0] == kind.key]:
                    del self._cursors[k]
            else:
                after = self._cursors.get((kind.key, page))
        if page > 0 and after is None:
            raise FetchError(
                f"{kind.key}: no cursor for page {page}; "
                "pages must be requested in order",
                page=page,
            )

        data = self._graphql(
            SDO_QUERY,
            {"types": [kind.endpoint], "first": int(page_size), "after": after},
        )
        conn = data.get("stixDomainObjects")
        if not isinstance(conn, dict):
            conn = {}
        nodes = [
            (edge or {}).get("node")
            for edge in conn.get("edges") or []
            if (edge or {}).get("node")
        ]
        info = conn.get("pageInfo") or {}
        global_count = int(info.get("globalCount") or 0)
        end_cursor = info.get("endCursor")

        if info.get("hasNextPage") and end_cursor:
            with self._cursor_lock:
                self._cursors[(kind.key, page + 1)] = end_cursor
            total_pages = max(
                math.ceil(global_count / max(1, int(page_size))), page + 2
            )
        else:
            total_pages = page + 1

        return {
            "content": nodes,
            "totalPages": total_pages,
            "totalElements": global_count,
        }

    def to_cached_entity(
        self, type_key: str, raw: Dict[str, Any]
    ) -> Optional[CachedEntity]:
        if not isinstance(raw, dict) or not raw.get("id"):
            return None
        name = raw.get("name")
        if not name:
            return None
        # x_mitre_id stays separate so it can bypass the length filter
        aliases = [
            *(raw.get("aliases") or []),
            *(raw.get("x_opencti_aliases") or []),
        ]
        return CachedEntity(
            id=str(raw["id"]),
            name=name,
            entity_type=type_key,
            aliases=aliases,
            external_id=raw.get("x_mitre_id") or None,
            platform_id=self.platform_id,
        )
