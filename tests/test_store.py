"""Tests for attestation stores — proves byte-exact round trips and NotFound."""

import pytest

from covenant.errors import NotFound
from covenant.persistence.store import FileAttestationStore, InMemoryAttestationStore


class TestInMemoryStore:
    def test_round_trip(self) -> None:
        store = InMemoryAttestationStore()
        store.save("att_1_a", b'{"a":1}')
        assert store.load("att_1_a") == b'{"a":1}'
        assert store.ids() == ["att_1_a"]

    def test_missing(self) -> None:
        with pytest.raises(NotFound):
            InMemoryAttestationStore().load("att_1_a")

    def test_delete(self) -> None:
        store = InMemoryAttestationStore()
        store.save("att_1_a", b"{}")
        store.delete("att_1_a")
        store.delete("att_1_a")
        assert store.ids() == []


class TestFileStore:
    def test_round_trip_and_overwrite(self, tmp_path) -> None:
        store = FileAttestationStore(tmp_path / "att")
        store.save("att_1_a", b'{"a":1}')
        store.save("att_1_a", b'{"a":2}')
        assert store.load("att_1_a") == b'{"a":2}'
        assert store.ids() == ["att_1_a"]

    def test_no_temp_files_left(self, tmp_path) -> None:
        store = FileAttestationStore(tmp_path)
        store.save("att_1_a", "{\"name\":\"Zoë\"}".encode("utf-8"))
        assert [p.name for p in tmp_path.iterdir()] == ["att_1_a.json"]

    def test_persists_across_instances(self, tmp_path) -> None:
        FileAttestationStore(tmp_path).save("att_1_a", b"{}")
        assert FileAttestationStore(tmp_path).load("att_1_a") == b"{}"

    def test_missing(self, tmp_path) -> None:
        with pytest.raises(NotFound):
            FileAttestationStore(tmp_path).load("att_1_a")

    def test_delete(self, tmp_path) -> None:
        store = FileAttestationStore(tmp_path)
        store.save("att_1_a", b"{}")
        store.delete("att_1_a")
        store.delete("att_1_a")
        with pytest.raises(NotFound):
            store.load("att_1_a")

    def test_path_traversal_rejected(self, tmp_path) -> None:
        with pytest.raises(NotFound):
            FileAttestationStore(tmp_path / "att").load("../secret")
