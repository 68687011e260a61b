from __future__ import annotations

import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from ..config import CACHE_DIR, QUOTA_BYTES
from ..core.errors import QuotaExceededError, StorageError

# Two key-value backends with the same surface (see core.interfaces):
#   MemoryKeyValueStore  process-local dict, used by tests and dry runs
#   FileKeyValueStore    one file per key under CACHE_DIR/kv
# Both account bytes per key and refuse writes that would exceed the quota.

_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _check_quota(
    key: str, size: int, current: int, existing: int, quota: Optional[int]
) -> None:
    if quota is None:
        return
    needed = current - existing + size
    if needed > quota:
        raise QuotaExceededError(
            f"writing {key!r} ({size} bytes) needs {needed} of {quota} bytes",
            needed=needed,
            quota=quota,
        )


class MemoryKeyValueStore:
    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, data: bytes) -> None:
        with self._lock:
            existing = len(self._data.get(key, b""))
            current = sum(len(v) for v in self._data.values())
            _check_quota(key, len(data), current, existing, self.quota_bytes)
            self._data[key] = bytes(data)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def bytes_in_use(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._data.values())


class FileKeyValueStore:
    """
    File-backed store. Writes go to a temp file in the same directory and are
    moved into place with os.replace, so readers never see a torn record.
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        quota_bytes: Optional[int] = QUOTA_BYTES,
    ) -> None:
        self.root = Path(root) if root is not None else CACHE_DIR / "kv"
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"invalid storage key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> Optional[bytes]:
        p = self._path(key)
        try:
            return p.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"read {p} failed: {e}") from e

    def set(self, key: str, data: bytes) -> None:
        p = self._path(key)
        with self._lock:
            existing = p.stat().st_size if p.exists() else 0
            _check_quota(
                key, len(data), self._usage(), existing, self.quota_bytes
            )
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(
                    dir=self.root, prefix=f".{key}.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "wb") as fh:
                        fh.write(data)
                    os.replace(tmp, p)
                except BaseException:
                    Path(tmp).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise StorageError(f"write {p} failed: {e}") from e

    def remove(self, key: str) -> None:
        with self._lock:
            self._path(key).unlink(missing_ok=True)

    def _usage(self) -> int:
        if not self.root.exists():
            return 0
        return sum(
            f.stat().st_size for f in self.root.glob("*.json") if f.is_file()
        )

    def bytes_in_use(self) -> int:
        with self._lock:
            return self._usage()
