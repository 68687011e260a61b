import pytest

from intelcache.core.errors import QuotaExceededError
from intelcache.storage.kv import FileKeyValueStore, MemoryKeyValueStore


class TestMemoryStore:
    def test_get_set_remove(self):
        kv = MemoryKeyValueStore()
        assert kv.get("k") is None
        kv.set("k", b"abc")
        assert kv.get("k") == b"abc"
        assert kv.bytes_in_use() == 3
        kv.remove("k")
        kv.remove("k")  # removing twice is fine
        assert kv.get("k") is None
        assert kv.bytes_in_use() == 0

    def test_quota_counts_replaced_value_once(self):
        kv = MemoryKeyValueStore(quota_bytes=10)
        kv.set("a", b"x" * 6)
        # overwriting "a" frees its previous 6 bytes
        kv.set("a", b"y" * 10)
        with pytest.raises(QuotaExceededError) as ei:
            kv.set("b", b"z")
        assert ei.value.quota == 10
        assert ei.value.needed == 11
        # failed write left the store untouched
        assert kv.get("a") == b"y" * 10
        assert kv.get("b") is None


class TestFileStore:
    def test_roundtrip_on_disk(self, tmp_path):
        kv = FileKeyValueStore(root=tmp_path / "kv", quota_bytes=None)
        assert kv.get("entity_cache_multi") is None
        assert kv.bytes_in_use() == 0

        kv.set("entity_cache_multi", b'{"platforms":{}}')
        assert (tmp_path / "kv" / "entity_cache_multi.json").exists()
        assert kv.get("entity_cache_multi") == b'{"platforms":{}}'
        assert kv.bytes_in_use() == len(b'{"platforms":{}}')

        kv.remove("entity_cache_multi")
        assert kv.get("entity_cache_multi") is None

    def test_no_temp_files_left_behind(self, tmp_path):
        kv = FileKeyValueStore(root=tmp_path, quota_bytes=None)
        kv.set("a", b"1")
        kv.set("a", b"22")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["a.json"]

    def test_quota_refuses_write(self, tmp_path):
        kv = FileKeyValueStore(root=tmp_path, quota_bytes=8)
        kv.set("a", b"12345")
        with pytest.raises(QuotaExceededError):
            kv.set("b", b"12345")
        assert kv.get("b") is None
        kv.set("a", b"12345678")
        assert kv.bytes_in_use() == 8

    def test_rejects_path_like_keys(self, tmp_path):
        kv = FileKeyValueStore(root=tmp_path)
        with pytest.raises(ValueError):
            kv.set("../escape", b"x")
