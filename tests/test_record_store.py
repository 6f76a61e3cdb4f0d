from __future__ import annotations

import asyncio
import logging

import pytest

from dfs_dashboard.errors import (
    DuplicateReplica,
    FileNotFound,
    InsufficientCapacity,
    InvalidRequest,
    NodeNotFound,
    RecordStoreError,
    ReferenceConstraintError,
    ReplicaNotFound,
)
from dfs_dashboard.models import NODE_OFFLINE, File, Node
from dfs_dashboard.storage import InMemoryRecordStore


def _seed(store: InMemoryRecordStore) -> None:
    async def scenario():
        await store.create_node(Node(id="n1", name="alpha", capacity_total=100, owner_id="u1"))
        await store.create_node(Node(id="n2", name="beta", capacity_total=50, owner_id="u2"))
        await store.create_file(File(id="f1", name="a.txt", size=10, owner_id="u1", blob_path="a.txt"))

    asyncio.run(scenario())


def test_reads_are_detached_snapshots():
    store = InMemoryRecordStore()
    _seed(store)
    node = asyncio.run(store.get_node("n1"))
    node.capacity_used = 99
    node.status = NODE_OFFLINE
    fresh = asyncio.run(store.get_node("n1"))
    assert fresh.capacity_used == 0
    assert fresh.is_online


def test_nodes_filtered_by_owner():
    store = InMemoryRecordStore()
    _seed(store)
    assert [n.id for n in asyncio.run(store.get_nodes("u1"))] == ["n1"]
    assert {n.id for n in asyncio.run(store.get_nodes())} == {"n1", "n2"}


def test_adjust_storage_rejects_overflow_and_clamps_at_zero():
    store = InMemoryRecordStore()
    _seed(store)
    assert asyncio.run(store.adjust_node_storage("n1", 100)).capacity_used == 100
    with pytest.raises(InsufficientCapacity):
        asyncio.run(store.adjust_node_storage("n1", 1))
    assert asyncio.run(store.adjust_node_storage("n1", -150)).capacity_used == 0


def test_update_status_validates_value():
    store = InMemoryRecordStore()
    _seed(store)
    assert asyncio.run(store.update_node_status("n1", NODE_OFFLINE)).status == NODE_OFFLINE
    with pytest.raises(InvalidRequest):
        asyncio.run(store.update_node_status("n1", "sleeping"))
    with pytest.raises(NodeNotFound):
        asyncio.run(store.update_node_status("missing", NODE_OFFLINE))


def test_replicas_join_node_snapshots_and_reject_duplicates():
    store = InMemoryRecordStore()
    _seed(store)
    replica = asyncio.run(store.create_replica("f1", "n1"))
    assert replica.node is not None and replica.node.name == "alpha"
    with pytest.raises(DuplicateReplica):
        asyncio.run(store.create_replica("f1", "n1"))
    with pytest.raises(FileNotFound):
        asyncio.run(store.create_replica("missing", "n1"))
    with pytest.raises(NodeNotFound):
        asyncio.run(store.create_replica("f1", "missing"))

    file = asyncio.run(store.get_file("f1"))
    assert file.node_ids() == ["n1"]
    assert [r.id for r in asyncio.run(store.get_replicas_by_node("n1"))] == [replica.id]


def test_node_delete_blocked_while_referenced():
    store = InMemoryRecordStore()
    _seed(store)
    replica = asyncio.run(store.create_replica("f1", "n1"))
    with pytest.raises(ReferenceConstraintError):
        asyncio.run(store.delete_node("n1"))
    asyncio.run(store.delete_replica(replica.id))
    asyncio.run(store.delete_node("n1"))
    with pytest.raises(NodeNotFound):
        asyncio.run(store.get_node("n1"))
    with pytest.raises(ReplicaNotFound):
        asyncio.run(store.get_replica(replica.id))


def test_file_delete_cascades_to_replicas():
    store = InMemoryRecordStore()
    _seed(store)
    asyncio.run(store.create_replica("f1", "n1"))
    asyncio.run(store.create_replica("f1", "n2"))
    removed = asyncio.run(store.delete_file("f1"))
    assert sorted(r.node_id for r in removed) == ["n1", "n2"]
    assert asyncio.run(store.get_replicas_by_node("n1")) == []
    with pytest.raises(FileNotFound):
        asyncio.run(store.delete_file("f1"))


def test_state_survives_restart(tmp_path):
    state = tmp_path / "state" / "records.pkl"
    store = InMemoryRecordStore(state_path=str(state))
    _seed(store)
    asyncio.run(store.create_replica("f1", "n1"))
    asyncio.run(store.adjust_node_storage("n1", 10))

    restored = InMemoryRecordStore(state_path=str(state))
    assert asyncio.run(restored.get_node("n1")).capacity_used == 10
    assert asyncio.run(restored.get_file("f1")).node_ids() == ["n1"]


def test_unreadable_snapshot_is_ignored(tmp_path, caplog):
    state = tmp_path / "records.pkl"
    state.write_bytes(b"not a pickle")
    with caplog.at_level(logging.WARNING, logger="dfs_dashboard.storage.record_store"):
        store = InMemoryRecordStore(state_path=str(state))
    assert asyncio.run(store.get_nodes()) == []
    assert "Ignoring unreadable record store snapshot" in caplog.text


def test_failed_persist_rolls_back_capacity(tmp_path, monkeypatch):
    store = InMemoryRecordStore(state_path=str(tmp_path / "records.pkl"))
    _seed(store)

    def broken():
        raise RecordStoreError("disk full")

    monkeypatch.setattr(store, "_persist_state", broken)
    with pytest.raises(RecordStoreError):
        asyncio.run(store.adjust_node_storage("n1", 10))
    assert asyncio.run(store.get_node("n1")).capacity_used == 0


def test_empty_snapshot_is_ignored(tmp_path, caplog):
    state = tmp_path / "records.pkl"
    state.write_bytes(b"")
    with caplog.at_level(logging.WARNING, logger="dfs_dashboard.storage.record_store"):
        store = InMemoryRecordStore(state_path=str(state))
    assert asyncio.run(store.get_files()) == []
    assert "Ignoring unreadable record store snapshot" in caplog.text


def _failing_saves(store: InMemoryRecordStore, monkeypatch) -> None:
    def broken():
        raise RecordStoreError("disk full")

    monkeypatch.setattr(store, "_persist_state", broken)


def _rows(store: InMemoryRecordStore):
    nodes = {node.id: (node.status, node.capacity_used) for node in asyncio.run(store.get_nodes())}
    files = {entry.id: sorted(entry.node_ids()) for entry in asyncio.run(store.get_files())}
    return nodes, files


def test_failed_save_reverts_new_replica(tmp_path, monkeypatch):
    store = InMemoryRecordStore(state_path=str(tmp_path / "records.pkl"))
    _seed(store)
    before = _rows(store)
    _failing_saves(store, monkeypatch)

    with pytest.raises(RecordStoreError):
        asyncio.run(store.create_replica("f1", "n1"))
    assert _rows(store) == before
    assert asyncio.run(store.get_replicas_by_node("n1")) == []


def test_failed_save_keeps_deleted_replica(tmp_path, monkeypatch):
    store = InMemoryRecordStore(state_path=str(tmp_path / "records.pkl"))
    _seed(store)
    replica = asyncio.run(store.create_replica("f1", "n1"))
    before = _rows(store)
    _failing_saves(store, monkeypatch)

    with pytest.raises(RecordStoreError):
        asyncio.run(store.delete_replica(replica.id))
    assert _rows(store) == before
    assert asyncio.run(store.get_replica(replica.id)).node_id == "n1"


def test_failed_save_reverts_new_file(tmp_path, monkeypatch):
    store = InMemoryRecordStore(state_path=str(tmp_path / "records.pkl"))
    _seed(store)
    before = _rows(store)
    _failing_saves(store, monkeypatch)

    with pytest.raises(RecordStoreError):
        asyncio.run(store.create_file(File(id="f2", name="b.txt", size=5, owner_id="u1", blob_path="b.txt")))
    assert _rows(store) == before
    with pytest.raises(FileNotFound):
        asyncio.run(store.get_file("f2"))


def test_failed_save_keeps_deleted_file_and_its_replicas(tmp_path, monkeypatch):
    store = InMemoryRecordStore(state_path=str(tmp_path / "records.pkl"))
    _seed(store)
    asyncio.run(store.create_replica("f1", "n1"))
    asyncio.run(store.create_replica("f1", "n2"))
    before = _rows(store)
    _failing_saves(store, monkeypatch)

    with pytest.raises(RecordStoreError):
        asyncio.run(store.delete_file("f1"))
    assert _rows(store) == before
    assert before[1] == {"f1": ["n1", "n2"]}


def test_failed_save_reverts_node_changes(tmp_path, monkeypatch):
    store = InMemoryRecordStore(state_path=str(tmp_path / "records.pkl"))
    _seed(store)
    before = _rows(store)
    _failing_saves(store, monkeypatch)

    with pytest.raises(RecordStoreError):
        asyncio.run(store.update_node_status("n1", NODE_OFFLINE))
    with pytest.raises(RecordStoreError):
        asyncio.run(store.delete_node("n2"))
    with pytest.raises(RecordStoreError):
        asyncio.run(store.create_node(Node(id="n3", name="gamma", capacity_total=10, owner_id="u1")))
    assert _rows(store) == before
