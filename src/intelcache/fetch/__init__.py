"""
fetch
=====
Full-corpus retrieval from a platform's paginated search endpoint.
"""

from .paginator import EntityKind, PaginatedFetcher

__all__ = ["EntityKind", "PaginatedFetcher"]
