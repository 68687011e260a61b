"""
Platform adapters for intelcache.

Each platform module implements the PlatformSource Protocol:
- OpenCTIPlatform  (GraphQL, cursor pagination behind a page-indexed search)
- OpenAEVPlatform  (REST, Spring page envelopes)

Add new platforms by creating a module and wiring it in factory.make_platform().
"""

from .factory import make_platform
from .openaev import OpenAEVPlatform
from .opencti import OpenCTIPlatform

__all__ = ["make_platform", "OpenAEVPlatform", "OpenCTIPlatform"]
