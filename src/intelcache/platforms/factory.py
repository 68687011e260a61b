from __future__ import annotations

from typing import Any

from ..config import PlatformConfig
from ..core.contracts import PlatformKind
from ..core.interfaces import PlatformSource
from .openaev import OpenAEVPlatform
from .opencti import OpenCTIPlatform


def make_platform(cfg: PlatformConfig, **kwargs: Any) -> PlatformSource:
    common = {"platform_id": cfg.id, "url": cfg.url, "token": cfg.token}
    if cfg.kind == PlatformKind.OPENCTI:
        return OpenCTIPlatform(**common, **kwargs)
    if cfg.kind == PlatformKind.OPENAEV:
        return OpenAEVPlatform(**common, **kwargs)
    raise ValueError(f"Unknown platform kind: {cfg.kind}")
