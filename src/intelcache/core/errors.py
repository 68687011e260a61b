from __future__ import annotations


class IntelCacheError(Exception):
    """Base class for intelcache errors."""


class ConfigError(IntelCacheError):
    """Missing or invalid configuration."""


class FetchError(IntelCacheError):
    """A remote search request failed; the whole fetch is aborted."""

    def __init__(self, message: str, *, page: int | None = None) -> None:
        super().__init__(message)
        self.page = page


class StorageError(IntelCacheError):
    """The key-value collaborator could not read or write a record."""


class QuotaExceededError(StorageError):
    """A write would exceed the storage quota."""

    def __init__(
        self, message: str, *, needed: int = 0, quota: int | None = None
    ) -> None:
        super().__init__(message)
        self.needed = needed
        self.quota = quota
