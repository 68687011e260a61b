import pytest

from conftest import entity
from intelcache.core.contracts import (
    CachedEntity,
    MultiPlatformCache,
    OpenAEVType,
    OpenCTIType,
    PlatformKind,
    PlatformSnapshot,
    RefreshOutcome,
    SaveResult,
    SaveStatus,
    entity_types_for,
)


class TestPlatformSnapshot:
    def test_every_bucket_present_from_construction(self):
        s = PlatformSnapshot.empty("P1", PlatformKind.OPENCTI, 10.0)
        assert list(s.entities) == [t.value for t in OpenCTIType]
        assert all(v == [] for v in s.entities.values())

        a = PlatformSnapshot.empty("A1", "openaev", 10.0)
        assert list(a.entities) == [t.value for t in OpenAEVType]

    def test_partial_buckets_are_filled(self):
        s = PlatformSnapshot(
            platform_id="P1",
            kind=PlatformKind.OPENCTI,
            timestamp=1.0,
            last_refresh=1.0,
            entities={"Malware": [entity("m1", "Emotet")]},
        )
        assert len(s.entities) == len(entity_types_for(PlatformKind.OPENCTI))
        assert s.total() == 1
        assert s.counts_by_type()["Campaign"] == 0

    def test_unknown_bucket_rejected(self):
        with pytest.raises(ValueError):
            PlatformSnapshot(
                platform_id="P1",
                kind=PlatformKind.OPENCTI,
                timestamp=1.0,
                last_refresh=1.0,
                entities={"Vulnerability": []},
            )
        s = PlatformSnapshot.empty("P1", PlatformKind.OPENAEV, 1.0)
        with pytest.raises(ValueError):
            s.replace_bucket("Malware", [])

    def test_upsert_replaces_by_id(self):
        s = PlatformSnapshot.empty("P1", PlatformKind.OPENCTI, 1.0)
        assert s.upsert(entity("m1", "Emotet"))
        assert s.upsert(entity("m2", "TrickBot"))
        assert s.upsert(entity("m1", "Emotet", aliases=["Geodo"]))

        bucket = s.entities["Malware"]
        assert [e.id for e in bucket] == ["m1", "m2"]
        assert bucket[0].aliases == ("Geodo",)
        assert bucket[0].platform_id == "P1"

    def test_upsert_uncached_type_is_refused(self):
        s = PlatformSnapshot.empty("P1", PlatformKind.OPENCTI, 1.0)
        assert s.upsert(entity("v1", "CVE-2024-0001", "Vulnerability")) is False
        assert s.total() == 0

    def test_copy_is_independent(self):
        s = PlatformSnapshot.empty("P1", PlatformKind.OPENCTI, 1.0)
        c = s.copy()
        c.upsert(entity("m1", "Emotet"))
        assert s.total() == 0

    def test_serialized_record_shape(self):
        s = PlatformSnapshot.empty("P1", PlatformKind.OPENCTI, 5.0)
        s.replace_bucket("Attack-Pattern", [entity("ap1", "Command and Scripting Interpreter", "Attack-Pattern", external_id="T1059")])
        d = s.to_dict()
        assert d["platform_id"] == "P1"
        assert d["kind"] == "opencti"
        assert d["entities"]["Attack-Pattern"][0] == {
            "id": "ap1",
            "name": "Command and Scripting Interpreter",
            "type": "Attack-Pattern",
            "external_id": "T1059",
            "platform_id": "P1",
        }

    def test_reading_skips_buckets_it_does_not_know(self):
        d = PlatformSnapshot.empty("P1", PlatformKind.OPENCTI, 5.0).to_dict()
        d["entities"]["Vulnerability"] = [{"id": "v", "name": "x", "type": "Vulnerability"}]
        s = PlatformSnapshot.from_dict(d)
        assert "Vulnerability" not in s.entities
        assert s.timestamp == 5.0

    def test_aggregate_skips_malformed_platforms(self):
        good = PlatformSnapshot.empty("P1", PlatformKind.OPENCTI, 5.0).to_dict()
        multi = MultiPlatformCache.from_dict(
            {"platforms": {"P1": good, "P2": {"kind": "nope"}}}
        )
        assert list(multi.platforms) == ["P1"]


class TestCachedEntity:
    def test_aliases_normalized_to_tuple_without_blanks(self):
        e = CachedEntity(id="1", name="APT29", entity_type="Intrusion-Set", aliases=["Cozy Bear", "", None])
        assert e.aliases == ("Cozy Bear",)

    def test_minimal_keeps_identity_and_first_aliases(self):
        e = entity("ap1", "Phishing", "Attack-Pattern", aliases=["a1", "a2", "a3", "a4"], external_id="T1566")
        m = e.minimal(3)
        assert (m.id, m.name, m.entity_type) == ("ap1", "Phishing", "Attack-Pattern")
        assert m.aliases == ("a1", "a2", "a3")
        assert m.external_id is None


class TestResults:
    def test_save_result_states(self):
        assert SaveResult.ok().persisted
        assert SaveResult.degraded("quota").persisted
        d = SaveResult.dropped("quota")
        assert d.status == SaveStatus.DROPPED
        assert not d.persisted
        assert d.reason == "quota"

    @pytest.mark.parametrize(
        "total,failed,attempted,ok",
        [
            (10, (), 3, True),
            (10, ("Malware",), 3, True),
            (0, (), 3, False),
            (10, ("a", "b", "c"), 3, False),
        ],
    )
    def test_refresh_outcome_success(self, total, failed, attempted, ok):
        out = RefreshOutcome("P1", total, failed_types=failed, attempted_types=attempted)
        assert out.success is ok
