import os
import tempfile
from typing import Any, Dict, Iterable, List, Optional

import pytest
import requests

# Keep the package's XDG cache dir out of the real home directory.
# Must happen before intelcache.config is first imported.
os.environ.setdefault(
    "XDG_CACHE_HOME", tempfile.mkdtemp(prefix="intelcache-tests-")
)

from dotenv import load_dotenv  # noqa: E402

load_dotenv()

from intelcache.core.contracts import CachedEntity, PlatformKind  # noqa: E402
from intelcache.fetch.paginator import EntityKind  # noqa: E402
from intelcache.manager import MultiPlatformCacheManager  # noqa: E402
from intelcache.storage.cache_store import CacheStore  # noqa: E402
from intelcache.storage.kv import MemoryKeyValueStore  # noqa: E402

# ---- mode & env flags -------------------------------------------------------


def _truthy(s: str | None) -> bool:
    return str(s).strip().lower() in {"1", "true", "yes", "on"}


LIVE = _truthy(os.getenv("INTELCACHE_LIVE_TESTS"))

OPENCTI_URL = os.getenv("INTELCACHE_OPENCTI_URL", "")
OPENCTI_TOKEN = os.getenv("INTELCACHE_OPENCTI_TOKEN", "")

have_opencti = bool(OPENCTI_URL and OPENCTI_TOKEN)


# =============================================================================
# FAKES
# =============================================================================


class FakeClock:
    """Manually advanced clock, in epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def raw_items(n: int, *, start: int = 0, prefix: str = "m") -> List[Dict[str, Any]]:
    """Raw platform records with ids m0, m1, ... and one alias each."""
    return [
        {
            "id": f"{prefix}{i}",
            "name": f"{prefix.upper()}-Family-{i}",
            "aliases": [f"alias-{prefix}-{i}"],
        }
        for i in range(start, start + n)
    ]


def paged(items: List[Dict[str, Any]], size: int) -> List[List[Dict[str, Any]]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def entity(
    id: str,
    name: str,
    entity_type: str = "Malware",
    aliases: Iterable[str] = (),
    external_id: Optional[str] = None,
) -> CachedEntity:
    return CachedEntity(
        id=id,
        name=name,
        entity_type=entity_type,
        aliases=tuple(aliases),
        external_id=external_id,
    )


class FakeSource:
    """
    In-memory PlatformSource. `pages` maps a type key to its list of pages;
    type keys listed in `fail` raise a connection error on `fail_page`.
    """

    def __init__(
        self,
        platform_id: str = "P1",
        kind: PlatformKind = PlatformKind.OPENCTI,
        pages: Optional[Dict[str, List[List[Dict[str, Any]]]]] = None,
        fail: Iterable[str] = (),
        fail_page: int = 0,
        page_size: int = 2,
    ) -> None:
        self.platform_id = platform_id
        self.kind = kind
        self.pages = dict(pages or {})
        self.fail = set(fail)
        self.fail_page = fail_page
        self.page_size = page_size
        self.calls: List[tuple] = []

    def entity_kinds(self) -> List[EntityKind]:
        keys = list(self.pages) + [k for k in self.fail if k not in self.pages]
        return [EntityKind(k, k, page_size=self.page_size) for k in keys]

    def search(self, kind: EntityKind, page: int, page_size: int) -> Dict[str, Any]:
        self.calls.append((kind.key, page))
        if kind.key in self.fail and page >= self.fail_page:
            raise requests.ConnectionError(f"{kind.key} unreachable")
        pages = self.pages.get(kind.key, [])
        return {
            "content": list(pages[page]) if page < len(pages) else [],
            "totalPages": len(pages),
            "totalElements": sum(len(p) for p in pages),
        }

    def to_cached_entity(
        self, type_key: str, raw: Dict[str, Any]
    ) -> Optional[CachedEntity]:
        if not raw.get("id") or not raw.get("name"):
            return None
        return CachedEntity(
            id=raw["id"],
            name=raw["name"],
            entity_type=type_key,
            aliases=tuple(raw.get("aliases") or ()),
            external_id=raw.get("external_id"),
            platform_id=self.platform_id,
        )


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return CacheStore(kv)


@pytest.fixture
def manager(store, clock):
    return MultiPlatformCacheManager(store, clock=clock)


# =============================================================================
# PYTEST MARKER HANDLING
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "live: test requires live API access")


def pytest_runtest_setup(item: pytest.Item) -> None:
    if "live" in item.keywords and not LIVE:
        pytest.skip("live test skipped (INTELCACHE_LIVE_TESTS not enabled)")
