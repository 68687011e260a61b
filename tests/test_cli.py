import pytest
from typer.testing import CliRunner

import intelcache.cli as cli_mod
import intelcache.client as client_mod
from conftest import FakeSource, entity, paged, raw_items
from intelcache.client import IntelCache
from intelcache.core.contracts import PlatformKind
from intelcache.storage.kv import MemoryKeyValueStore

runner = CliRunner()

PLATFORMS = """
[[platforms]]
id = "P1"
kind = "opencti"
url = "https://octi.example.org"
token = "DUMMY"
"""


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Platforms file plus an in-memory backend shared by every CLI call."""
    f = tmp_path / "platforms.toml"
    f.write_text(PLATFORMS, encoding="utf-8")
    kv = MemoryKeyValueStore(quota_bytes=1_000_000)
    monkeypatch.setattr(
        cli_mod, "IntelCache", lambda **kw: IntelCache(kv=kv, **kw)
    )
    sources = {"P1": FakeSource("P1", pages={"Malware": paged(raw_items(3), 2)})}
    monkeypatch.setattr(
        client_mod, "make_platform", lambda c, **kw: sources[c.id]
    )
    return {"file": str(f), "kv": kv, "sources": sources}


def _seed(kv, pid, *entities):
    ic = IntelCache(platforms=[], kv=kv)
    for e in entities:
        ic.manager.add_entity(pid, PlatformKind.OPENCTI, e)


def test_stats_without_cache(env):
    res = runner.invoke(cli_mod.app, ["stats", "--platforms-file", env["file"]])
    assert res.exit_code == 1
    assert "no cached entities" in res.stdout


def test_refresh_then_stats_and_lookup(env):
    res = runner.invoke(cli_mod.app, ["refresh", "--platforms-file", env["file"]])
    assert res.exit_code == 0, res.stdout
    assert env["sources"]["P1"].calls == [("Malware", 0), ("Malware", 1)]

    res = runner.invoke(cli_mod.app, ["stats", "--platforms-file", env["file"]])
    assert res.exit_code == 0
    assert "total\t3" in res.stdout
    assert "Malware\t3" in res.stdout

    res = runner.invoke(cli_mod.app, ["lookup", "ALIAS-M-1", "--platforms-file", env["file"]])
    assert res.exit_code == 0
    assert res.stdout.strip() == "P1\tMalware\tm1\tM-Family-1"


def test_refresh_single_platform(env):
    res = runner.invoke(
        cli_mod.app, ["refresh", "--platform", "P1", "--platforms-file", env["file"]]
    )
    assert res.exit_code == 0
    assert res.stdout.strip() == "P1\t3\tok"

    res = runner.invoke(
        cli_mod.app, ["refresh", "--platform", "nope", "--platforms-file", env["file"]]
    )
    assert res.exit_code == 2


def test_failed_refresh_exit_code(env):
    env["sources"]["P1"] = FakeSource("P1", fail={"Malware"})
    res = runner.invoke(cli_mod.app, ["refresh", "--platforms-file", env["file"]])
    assert res.exit_code == 1


def test_lookup_miss(env):
    res = runner.invoke(cli_mod.app, ["lookup", "nothing", "--platforms-file", env["file"]])
    assert res.exit_code == 1


def test_cleanup_and_clear(env):
    _seed(env["kv"], "P1", entity("m1", "Emotet"))
    _seed(env["kv"], "OLD", entity("m2", "Qakbot"))

    res = runner.invoke(cli_mod.app, ["cleanup", "--platforms-file", env["file"]])
    assert res.exit_code == 0
    assert res.stdout.split() == ["OLD"]

    res = runner.invoke(cli_mod.app, ["clear", "--platform", "OLD", "--platforms-file", env["file"]])
    assert "nothing cached for OLD" in res.stdout

    res = runner.invoke(cli_mod.app, ["clear", "--platforms-file", env["file"]])
    assert res.exit_code == 0
    res = runner.invoke(cli_mod.app, ["stats", "--platforms-file", env["file"]])
    assert res.exit_code == 1


def test_usage(env):
    _seed(env["kv"], "P1", entity("m1", "Emotet"))
    res = runner.invoke(cli_mod.app, ["usage", "--platforms-file", env["file"]])
    assert res.exit_code == 0
    used, quota, pct = res.stdout.split()
    assert int(used) > 0
    assert quota == "1000000"
    assert pct.endswith("%")


def test_bad_platforms_file(tmp_path):
    f = tmp_path / "platforms.toml"
    f.write_text("[[platforms]\nbroken", encoding="utf-8")
    res = runner.invoke(cli_mod.app, ["stats", "--platforms-file", str(f)])
    assert res.exit_code == 2
