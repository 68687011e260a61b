from __future__ import annotations

"""
paginator.py
------------
Drives a platform's page-indexed search endpoint until exhausted.

Pages for one kind are requested strictly in order: page n+1 is only asked
for after page n answered, because each answer carries the total page count.
No dedup is performed; if the remote collection mutates mid-fetch the result
can hold duplicates or gaps.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import requests

from ..config import DEFAULT_PAGE_SIZE
from ..core.errors import FetchError
from ..core.interfaces import PlatformSource

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityKind:
    """Selects one search endpoint of a platform."""

    key: str  # entity type bucket, e.g. "Malware"
    endpoint: str  # REST path or GraphQL type selector
    page_size: int = DEFAULT_PAGE_SIZE
    distinct: bool = False  # server-side distinct flag (findings)


def _total_pages(envelope: Dict[str, Any]) -> int:
    # missing, zero or malformed totals count as a single page
    try:
        n = int(envelope.get("totalPages") or 1)
    except (TypeError, ValueError):
        return 1
    return max(1, n)


class PaginatedFetcher:
    def __init__(self, *, max_pages: int = 0) -> None:
        # 0 = uncapped; a cap only guards against runaway servers
        self.max_pages = max(0, int(max_pages))

    def fetch_all(
        self, source: PlatformSource, kind: EntityKind
    ) -> List[Dict[str, Any]]:
        """
        Return every element the server reports for `kind`, in server order.
        Any request failure aborts the fetch with FetchError.
        """
        results: List[Dict[str, Any]] = []
        page = 0
        total_pages = 1

        while page < total_pages:
            try:
                envelope = source.search(kind, page, kind.page_size)
            except FetchError:
                raise
            except (requests.RequestException, ValueError) as e:
                raise FetchError(
                    f"{kind.key}: page {page} failed: {type(e).__name__}: {e}",
                    page=page,
                ) from e

            if not isinstance(envelope, dict):
                envelope = {}
            content = envelope.get("content") or []
            if isinstance(content, list):
                results.extend(content)
            total_pages = _total_pages(envelope)
            page += 1

            log.debug(
                "[%s] %s page %d/%d: %d items (total %d)",
                source.platform_id,
                kind.key,
                page,
                total_pages,
                len(content) if isinstance(content, list) else 0,
                len(results),
            )
            if self.max_pages and page >= self.max_pages:
                log.warning(
                    "[%s] %s stopped at page cap %d of %d",
                    source.platform_id,
                    kind.key,
                    self.max_pages,
                    total_pages,
                )
                break

        log.info(
            "[%s] fetched %s: %d items in %d pages",
            source.platform_id,
            kind.key,
            len(results),
            page,
        )
        return results
