"""
Global configuration for intelcache.
Only infrastructure knobs live here (paths, intervals, caps, retries, creds).
Platform definitions are read from a TOML file, see load_platforms().
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final, List, Optional

from dotenv import load_dotenv

try:
    import tomllib  # py3.11+
except ModuleNotFoundError:  # py3.10 fallback
    import tomli as tomllib  # type: ignore[no-redef]

from .core.contracts import PlatformKind
from .core.errors import ConfigError

load_dotenv()

# -----------------------------------------------------------------------------
# Storage roots
# -----------------------------------------------------------------------------
# XDG cache location: ~/.cache/intelcache (or $XDG_CACHE_HOME/intelcache)
_XDG_CACHE_HOME = Path(os.getenv("XDG_CACHE_HOME", Path.home() / ".cache"))
CACHE_DIR = _XDG_CACHE_HOME / "intelcache"
CACHE_DIR.mkdir(parents=True, exist_ok=True)

# Single aggregate record holding every platform snapshot
CACHE_KEY: Final[str] = "entity_cache_multi"


def _truthy(s: Optional[str]) -> bool:
    return str(s).strip().lower() in {"1", "true", "yes", "on"}


# -----------------------------------------------------------------------------
# Expiry / refresh cadence (seconds)
# -----------------------------------------------------------------------------
CACHE_DURATION_S: Final[int] = int(
    os.getenv("INTELCACHE_CACHE_DURATION_S", "3600")
)
REFRESH_INTERVAL_S: Final[int] = int(
    os.getenv("INTELCACHE_REFRESH_INTERVAL_S", "1800")
)
# used by the scheduler until every platform has been cached once
RETRY_INTERVAL_S: Final[int] = int(
    os.getenv("INTELCACHE_RETRY_INTERVAL_S", "300")
)

# -----------------------------------------------------------------------------
# Pagination
# -----------------------------------------------------------------------------
DEFAULT_PAGE_SIZE: Final[int] = int(os.getenv("INTELCACHE_PAGE_SIZE", "500"))
FINDINGS_PAGE_SIZE: Final[int] = int(
    os.getenv("INTELCACHE_FINDINGS_PAGE_SIZE", "200")
)

# -----------------------------------------------------------------------------
# Storage caps / quota
# -----------------------------------------------------------------------------
# Per-bucket caps on full saves, by platform kind
MAX_ENTITIES_PER_TYPE: Final[dict] = {
    PlatformKind.OPENCTI: int(os.getenv("INTELCACHE_OPENCTI_CAP", "50000")),
    PlatformKind.OPENAEV: int(os.getenv("INTELCACHE_OPENAEV_CAP", "20000")),
}
MINIMAL_ENTITIES_PER_TYPE: Final[int] = int(
    os.getenv("INTELCACHE_MINIMAL_CAP", "10000")
)
MINIMAL_ALIASES: Final[int] = int(os.getenv("INTELCACHE_MINIMAL_ALIASES", "3"))

UNLIMITED_STORAGE: Final[bool] = _truthy(
    os.getenv("INTELCACHE_UNLIMITED_STORAGE")
)
QUOTA_BYTES: Final[Optional[int]] = (
    None
    if UNLIMITED_STORAGE
    else int(os.getenv("INTELCACHE_QUOTA_BYTES", str(10 * 1024 * 1024)))
)
NEAR_QUOTA_RATIO: Final[float] = 0.9

# -----------------------------------------------------------------------------
# Name matching
# -----------------------------------------------------------------------------
MIN_NAME_LENGTH: Final[int] = int(os.getenv("INTELCACHE_MIN_NAME_LENGTH", "4"))

# -----------------------------------------------------------------------------
# HTTP / retry / pacing
# -----------------------------------------------------------------------------
DEFAULT_TIMEOUT_S: Final[int] = int(os.getenv("INTELCACHE_TIMEOUT_S", "45"))

RETRY_STATUS_FORCELIST: Final[List[int]] = [429, 500, 502, 503, 504]
RETRY_BACKOFF_FACTOR: Final[float] = float(
    os.getenv("INTELCACHE_RETRY_BACKOFF", "1.0")
)
RETRY_ALLOWED_METHODS: Final[List[str]] = ["GET", "POST"]

DEFAULT_RPM: Final[int] = int(os.getenv("INTELCACHE_DEFAULT_RPM", "120"))
MAX_WORKERS: Final[int] = int(os.getenv("INTELCACHE_MAX_WORKERS", "8"))

USER_AGENT: Final[str] = os.getenv(
    "INTELCACHE_USER_AGENT", "intelcache/0.3.0"
)

PLATFORMS_FILE: Final[Path] = Path(
    os.getenv("INTELCACHE_PLATFORMS_FILE", CACHE_DIR / "platforms.toml")
)


def get_env(
    name: str, *, required: bool = False, default: Optional[str] = None
) -> Optional[str]:
    """Small helper to fetch env vars with an optional 'required' flag."""
    val = os.getenv(name, default)
    if required and not val:
        raise ConfigError(f"Missing required environment variable: {name}")
    return val


# -----------------------------------------------------------------------------
# Platform definitions
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class PlatformConfig:
    id: str
    kind: PlatformKind
    url: str
    token: str = ""
    name: str = ""
    enabled: bool = True

    @property
    def label(self) -> str:
        return self.name or self.id


def _platform_from_table(tbl: dict) -> PlatformConfig:
    try:
        pid = str(tbl["id"]).strip()
        url = str(tbl["url"]).strip()
        kind = PlatformKind(str(tbl["kind"]).strip().lower())
    except KeyError as e:
        raise ConfigError(f"platform entry is missing {e.args[0]!r}") from e
    except ValueError as e:
        raise ConfigError(f"unknown platform kind: {tbl.get('kind')!r}") from e
    if not pid or not url:
        raise ConfigError("platform id and url must be non-empty")
    token = str(tbl.get("token") or "")
    # token_env lets the file reference a secret kept in .env
    if not token and tbl.get("token_env"):
        token = get_env(str(tbl["token_env"]), required=True) or ""
    return PlatformConfig(
        id=pid,
        kind=kind,
        url=url,
        token=token,
        name=str(tbl.get("name") or ""),
        enabled=bool(tbl.get("enabled", True)),
    )


def load_platforms(path: Optional[Path] = None) -> List[PlatformConfig]:
    """
    Read `[[platforms]]` tables from a TOML file. A missing file means
    "nothing configured" and yields an empty list. Duplicate ids are an error.
    """
    p = Path(path) if path is not None else PLATFORMS_FILE
    if not p.exists():
        return []
    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid platforms file {p}: {e}") from e

    out: List[PlatformConfig] = []
    seen: set[str] = set()
    for tbl in data.get("platforms") or []:
        cfg = _platform_from_table(tbl)
        if cfg.id in seen:
            raise ConfigError(f"duplicate platform id: {cfg.id}")
        seen.add(cfg.id)
        out.append(cfg)
    return out


def valid_platform_ids(platforms: List[PlatformConfig]) -> List[str]:
    """Ids of enabled platforms; this is what orphan cleanup keeps."""
    return [p.id for p in platforms if p.enabled]


# -----------------------------------------------------------------------------
# Public exports
# -----------------------------------------------------------------------------
__all__ = [
    # roots
    "CACHE_DIR",
    "CACHE_KEY",
    # cadence
    "CACHE_DURATION_S",
    "REFRESH_INTERVAL_S",
    "RETRY_INTERVAL_S",
    # pagination
    "DEFAULT_PAGE_SIZE",
    "FINDINGS_PAGE_SIZE",
    # storage
    "MAX_ENTITIES_PER_TYPE",
    "MINIMAL_ENTITIES_PER_TYPE",
    "MINIMAL_ALIASES",
    "UNLIMITED_STORAGE",
    "QUOTA_BYTES",
    "NEAR_QUOTA_RATIO",
    # matching
    "MIN_NAME_LENGTH",
    # http/retry/pacing
    "DEFAULT_TIMEOUT_S",
    "RETRY_STATUS_FORCELIST",
    "RETRY_BACKOFF_FACTOR",
    "RETRY_ALLOWED_METHODS",
    "DEFAULT_RPM",
    "MAX_WORKERS",
    "USER_AGENT",
    # platforms
    "PLATFORMS_FILE",
    "PlatformConfig",
    "load_platforms",
    "valid_platform_ids",
    # env helpers
    "get_env",
]
