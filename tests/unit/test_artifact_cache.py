"""Tests for the ArtifactCache — durable, atomic, corruption-tolerant."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from deployforge.core.artifact_cache import ArtifactCache
from deployforge.models.artifacts import ArtifactKey, ArtifactRecord
from deployforge.models.relations import ManifestEdge, ManifestNode, RelationManifest

ADDR_A = "0x" + "a1" * 20
ADDR_B = "0x" + "b2" * 20


@pytest.fixture
def key() -> ArtifactKey:
    return ArtifactKey(network="mainnet", deployment="usdc", name="Comet")


class TestArtifactCache:
    def test_get_absent_returns_none(self, cache: ArtifactCache, key: ArtifactKey):
        assert cache.get(key) is None

    def test_put_then_get(self, cache: ArtifactCache, key: ArtifactKey):
        record = ArtifactRecord(address=ADDR_A, constructor_args=[1, "x"], build_id="b1")
        cache.put(key, record)
        assert cache.get(key) == record

    def test_survives_new_instance(self, tmp_dir: Path, key: ArtifactKey):
        ArtifactCache(tmp_dir).put(key, ArtifactRecord(address=ADDR_A))
        reopened = ArtifactCache(tmp_dir)
        assert reopened.get(key).address == ADDR_A

    def test_layout_is_per_network_and_deployment(
        self, cache: ArtifactCache, key: ArtifactKey
    ):
        cache.put(key, ArtifactRecord(address=ADDR_A))
        path = cache.scope_dir("mainnet", "usdc") / "artifacts.json"
        assert path.exists()
        assert "Comet" in json.loads(path.read_text())["artifacts"]

    def test_names_keep_case(self, cache: ArtifactCache, key: ArtifactKey):
        cache.put(key, ArtifactRecord(address=ADDR_A))
        assert cache.names("mainnet", "usdc") == ["Comet"]

    def test_no_temp_files_left_behind(self, cache: ArtifactCache, key: ArtifactKey):
        cache.put(key, ArtifactRecord(address=ADDR_A))
        leftovers = list(cache.scope_dir("mainnet", "usdc").glob("*.tmp"))
        assert leftovers == []

    def test_replace_keeps_history(self, cache: ArtifactCache, key: ArtifactKey):
        first = ArtifactRecord(address=ADDR_A)
        second = ArtifactRecord(address=ADDR_B)
        cache.put(key, first)
        cache.put(key, second)
        assert cache.get(key).address == ADDR_B
        assert [r.address for r in cache.history(key)] == [ADDR_A]

    def test_rewrite_same_address_adds_no_history(
        self, cache: ArtifactCache, key: ArtifactKey
    ):
        cache.put(key, ArtifactRecord(address=ADDR_A))
        cache.put(key, ArtifactRecord(address=ADDR_A.upper().replace("0X", "0x")))
        assert cache.history(key) == []

    def test_other_keys_untouched_by_put(self, cache: ArtifactCache, key: ArtifactKey):
        other = ArtifactKey(network="mainnet", deployment="usdc", name="Rewards")
        cache.put(other, ArtifactRecord(address=ADDR_B))
        cache.put(key, ArtifactRecord(address=ADDR_A))
        assert cache.get(other).address == ADDR_B


class TestCorruption:
    def test_torn_file_reads_as_absent(self, cache: ArtifactCache, key: ArtifactKey):
        path = cache.scope_dir("mainnet", "usdc") / "artifacts.json"
        path.parent.mkdir(parents=True)
        path.write_text('{"artifacts": {"Comet": {"addr')
        assert cache.get(key) is None
        assert cache.records("mainnet", "usdc") == {}

    def test_torn_file_is_replaced_by_next_put(
        self, cache: ArtifactCache, key: ArtifactKey
    ):
        path = cache.scope_dir("mainnet", "usdc") / "artifacts.json"
        path.parent.mkdir(parents=True)
        path.write_text("not json")
        cache.put(key, ArtifactRecord(address=ADDR_A))
        assert cache.get(key).address == ADDR_A

    def test_bad_record_does_not_hide_good_ones(
        self, cache: ArtifactCache, key: ArtifactKey
    ):
        cache.put(key, ArtifactRecord(address=ADDR_A))
        path = cache.scope_dir("mainnet", "usdc") / "artifacts.json"
        data = json.loads(path.read_text())
        data["artifacts"]["Broken"] = {"constructor_args": "not-a-list"}
        path.write_text(json.dumps(data))

        broken = ArtifactKey(network="mainnet", deployment="usdc", name="Broken")
        assert cache.get(broken) is None
        assert set(cache.records("mainnet", "usdc")) == {"Comet"}

    def test_non_object_file_reads_as_empty(self, cache: ArtifactCache):
        path = cache.scope_dir("mainnet", "usdc") / "state.json"
        path.parent.mkdir(parents=True)
        path.write_text("[1, 2, 3]")
        assert cache.read_roots("mainnet", "usdc") == {}
        assert cache.read_manifest("mainnet", "usdc") is None


class TestSimulation:
    def test_memory_mode_writes_nothing(self, tmp_dir: Path, key: ArtifactKey):
        sim = ArtifactCache(tmp_dir, write_to_disk=False)
        sim.put(key, ArtifactRecord(address=ADDR_A))
        assert sim.get(key).address == ADDR_A
        assert not (tmp_dir / "mainnet").exists()

    def test_memory_mode_reads_through_to_disk(self, tmp_dir: Path, key: ArtifactKey):
        ArtifactCache(tmp_dir).put(key, ArtifactRecord(address=ADDR_A))
        sim = ArtifactCache(tmp_dir, write_to_disk=False)
        assert sim.get(key).address == ADDR_A

        sim.put(key, ArtifactRecord(address=ADDR_B))
        assert ArtifactCache(tmp_dir).get(key).address == ADDR_A


class TestState:
    def test_manifest_roundtrip_and_delete(self, cache: ArtifactCache):
        manifest = RelationManifest(
            nodes=[ManifestNode(address=ADDR_A, kind="comet", alias="comet")],
            edges=[ManifestEdge(source=ADDR_A, target=ADDR_B, relation="baseToken")],
        )
        cache.store_manifest("mainnet", "usdc", manifest)
        assert cache.read_manifest("mainnet", "usdc") == manifest

        cache.delete_manifest("mainnet", "usdc")
        assert cache.read_manifest("mainnet", "usdc") is None

    def test_roots(self, cache: ArtifactCache):
        cache.store_roots("mainnet", "usdc", {"comet": ADDR_A})
        assert cache.read_roots("mainnet", "usdc") == {"comet": ADDR_A}

    def test_vars_checkpoint_is_a_copy(self, cache: ArtifactCache):
        cache.store_vars("mainnet", "usdc", "m1", {"pool": ADDR_A, "ids": [1, 2]})
        loaded = cache.read_vars("mainnet", "usdc", "m1")
        loaded["ids"].append(3)
        assert cache.read_vars("mainnet", "usdc", "m1") == {"pool": ADDR_A, "ids": [1, 2]}
        assert cache.read_vars("mainnet", "usdc", "other") is None

    def test_state_does_not_clobber_artifacts(self, cache: ArtifactCache, key: ArtifactKey):
        cache.put(key, ArtifactRecord(address=ADDR_A))
        cache.store_roots("mainnet", "usdc", {"comet": ADDR_A})
        cache.store_vars("mainnet", "usdc", "m1", 7)
        assert cache.get(key).address == ADDR_A

    def test_interfaces_by_build_id(self, cache: ArtifactCache, key: ArtifactKey):
        abi = [{"type": "function", "name": "decimals", "inputs": [], "outputs": []}]
        cache.put(key, ArtifactRecord(address=ADDR_A, build_id="erc20"))
        cache.store_vars("mainnet", "usdc", "m1", 7)
        cache.store_interface("mainnet", "usdc", "erc20", abi)

        assert cache.read_interface("mainnet", "usdc", "erc20") == abi
        assert cache.read_interface("mainnet", "usdc", "other") is None
        assert cache.read_interface("base", "usdc", "erc20") is None
        assert cache.read_vars("mainnet", "usdc", "m1") == 7
        assert cache.get(key).build_id == "erc20"
