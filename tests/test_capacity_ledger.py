from __future__ import annotations

import asyncio
import logging

import pytest

from dfs_dashboard.config import DashboardConfig
from dfs_dashboard.errors import InsufficientCapacity, InvalidRequest, RecordStoreError
from dfs_dashboard.models import Node
from dfs_dashboard.services.capacity_ledger import CapacityLedger
from dfs_dashboard.storage.record_store import InMemoryRecordStore
from dfs_dashboard.telemetry import TelemetryCollector


def _bootstrap(total: int = 100, used: int = 0):
    cfg = DashboardConfig.default()
    telemetry = TelemetryCollector(cfg.observability)
    store = InMemoryRecordStore()
    ledger = CapacityLedger(config=cfg, telemetry=telemetry, record_store=store)
    node = Node(id="node-a", name="alpha", capacity_total=total, owner_id="user-1", capacity_used=used)
    asyncio.run(store.create_node(node))
    return store, ledger, node


def _used(store: InMemoryRecordStore, node_id: str) -> int:
    return asyncio.run(store.get_node(node_id)).capacity_used


def test_reserve_persists_increment():
    store, ledger, node = _bootstrap()
    updated = asyncio.run(ledger.reserve(node, 40))
    assert updated.capacity_used == 40
    assert _used(store, node.id) == 40


def test_reserve_beyond_total_leaves_node_untouched():
    store, ledger, node = _bootstrap(used=40)
    with pytest.raises(InsufficientCapacity) as excinfo:
        asyncio.run(ledger.reserve(node, 70))
    assert excinfo.value.node_id == node.id
    assert "alpha" in excinfo.value.message
    assert _used(store, node.id) == 40


def test_reserve_exact_fit_fills_node():
    store, ledger, node = _bootstrap(used=60)
    asyncio.run(ledger.reserve(node, 40))
    assert _used(store, node.id) == 100


def test_store_rejects_reservation_from_stale_snapshot():
    store, ledger, node = _bootstrap()
    asyncio.run(store.adjust_node_storage(node.id, 90))
    with pytest.raises(InsufficientCapacity):
        asyncio.run(ledger.reserve(node, 20))
    assert _used(store, node.id) == 90


def test_reserve_then_release_restores_prior_value():
    store, ledger, node = _bootstrap(used=25)
    reserved = asyncio.run(ledger.reserve(node, 30))
    asyncio.run(ledger.release(reserved, 30))
    assert _used(store, node.id) == 25


def test_release_clamps_at_zero_and_logs(caplog):
    store, ledger, node = _bootstrap(used=10)
    with caplog.at_level(logging.WARNING, logger="dfs_dashboard.services.capacity_ledger"):
        updated = asyncio.run(ledger.release(node, 30))
    assert updated.capacity_used == 0
    assert _used(store, node.id) == 0
    assert "Ledger inconsistency" in caplog.text


@pytest.mark.parametrize("amount", [0, -5, 2.5, True])
def test_amount_must_be_positive_integer(amount):
    store, ledger, node = _bootstrap()
    with pytest.raises(InvalidRequest):
        asyncio.run(ledger.reserve(node, amount))
    with pytest.raises(InvalidRequest):
        asyncio.run(ledger.release(node, amount))
    assert _used(store, node.id) == 0


def test_unexpected_store_failure_is_wrapped(monkeypatch):
    store, ledger, node = _bootstrap()

    async def broken(node_id, delta):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(store, "adjust_node_storage", broken)
    with pytest.raises(RecordStoreError) as excinfo:
        asyncio.run(ledger.reserve(node, 10))
    assert "connection reset" in excinfo.value.message
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_reservations_are_recorded_as_metrics():
    _, ledger, node = _bootstrap()
    reserved = asyncio.run(ledger.reserve(node, 15))
    asyncio.run(ledger.release(reserved, 5))
    assert ledger.telemetry.metric_total("capacity.reserved") == 15
    assert ledger.telemetry.metric_total("capacity.released") == 5
