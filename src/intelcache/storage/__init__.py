"""
storage
=======
Quota-aware persistence of platform snapshots.

- kv.py           key-value backends (memory, file)
- cache_store.py  the aggregate record, trim-on-write and the degrade ladder
"""

from .cache_store import CacheStore
from .kv import FileKeyValueStore, MemoryKeyValueStore

__all__ = ["CacheStore", "FileKeyValueStore", "MemoryKeyValueStore"]
