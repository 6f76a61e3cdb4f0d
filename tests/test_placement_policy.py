from __future__ import annotations

import asyncio

import pytest

from dfs_dashboard.config import DashboardConfig
from dfs_dashboard.errors import InsufficientCapacity, NodeNotFound, NodeOffline, NoNodesSelected
from dfs_dashboard.models import NODE_OFFLINE, Node
from dfs_dashboard.services.capacity_ledger import CapacityLedger
from dfs_dashboard.services.placement_policy import PlacementPolicy
from dfs_dashboard.storage.record_store import InMemoryRecordStore
from dfs_dashboard.telemetry import TelemetryCollector


def _policy() -> PlacementPolicy:
    cfg = DashboardConfig.default()
    return PlacementPolicy(config=cfg, telemetry=TelemetryCollector(cfg.observability))


def _nodes(*nodes: Node) -> dict[str, Node]:
    return {node.id: node for node in nodes}


def _node(node_id: str, total: int = 100, used: int = 0, status: str = "online") -> Node:
    return Node(id=node_id, name=node_id.upper(), capacity_total=total, owner_id="user-1", capacity_used=used, status=status)


def test_empty_selection_is_rejected():
    with pytest.raises(NoNodesSelected):
        _policy().validate(10, [], _nodes(_node("a")))


def test_offline_target_is_rejected():
    nodes = _nodes(_node("a"), _node("b", status=NODE_OFFLINE))
    with pytest.raises(NodeOffline) as excinfo:
        _policy().validate(10, ["a", "b"], nodes)
    assert excinfo.value.node_id == "b"


def test_offline_rule_runs_before_capacity_rule_for_whole_batch():
    nodes = _nodes(_node("full", total=10, used=10), _node("down", status=NODE_OFFLINE))
    with pytest.raises(NodeOffline) as excinfo:
        _policy().validate(5, ["full", "down"], nodes)
    assert excinfo.value.node_id == "down"


def test_target_without_room_is_rejected():
    nodes = _nodes(_node("a"), _node("b", total=100, used=95))
    with pytest.raises(InsufficientCapacity) as excinfo:
        _policy().validate(10, ["a", "b"], nodes)
    assert excinfo.value.node_id == "b"
    assert excinfo.value.available == 5
    assert excinfo.value.requested == 10


def test_unknown_target_is_rejected():
    with pytest.raises(NodeNotFound):
        _policy().validate(10, ["ghost"], _nodes(_node("a")))


def test_exact_fit_is_accepted_and_order_kept_without_duplicates():
    nodes = _nodes(_node("a", used=90), _node("b"), _node("c"))
    selected = _policy().validate(10, ["c", "a", "c", "b"], nodes)
    assert [node.id for node in selected] == ["c", "a", "b"]


def test_validate_does_not_touch_capacity():
    node = _node("a", used=30)
    _policy().validate(50, ["a"], _nodes(node))
    assert node.capacity_used == 30


def test_reserving_on_every_validated_node_succeeds():
    cfg = DashboardConfig.default()
    telemetry = TelemetryCollector(cfg.observability)
    store = InMemoryRecordStore()
    ledger = CapacityLedger(config=cfg, telemetry=telemetry, record_store=store)
    policy = PlacementPolicy(config=cfg, telemetry=telemetry)
    nodes = [_node("a", total=50, used=20), _node("b", total=30), _node("c", total=100, used=70)]
    for node in nodes:
        asyncio.run(store.create_node(node))

    selected = policy.validate(30, ["a", "b", "c"], _nodes(*nodes))
    for node in selected:
        asyncio.run(ledger.reserve(node, 30))

    stored = {node.id: node for node in asyncio.run(store.get_nodes())}
    assert stored["a"].capacity_used == 50
    assert stored["b"].capacity_used == 30
    assert stored["c"].capacity_used == 100
