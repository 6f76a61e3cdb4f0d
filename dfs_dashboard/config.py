"""Configuration primitives for the storage dashboard control plane."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass
class RecordStoreConfig:
    backend: str = "in-memory"
    state_path: Optional[str] = None


@dataclass
class BlobStoreConfig:
    base_path: str = field(default_factory=lambda: str(Path.cwd() / "data" / "blobs"))
    bucket: str = "file_uploads"


@dataclass
class MessageBusConfig:
    backend: str = "in-memory"
    topics: List[str] = field(default_factory=lambda: [
        "nodes.created",
        "nodes.status",
        "nodes.deleted",
        "files.uploaded",
        "files.deleted",
        "replicas.created",
        "replicas.deleted",
        "rebalance.planned",
        "rebalance.applied",
    ])


@dataclass
class PlacementPolicyConfig:
    # Sizes and capacities are accounted in whole units of this many bytes.
    storage_unit_bytes: int = 1024 * 1024


@dataclass
class RebalancePolicyConfig:
    max_moves: int = 50
    tolerance: float = 0.05


@dataclass
class ObservabilityConfig:
    log_level: str = "INFO"
    activity_feed_size: int = 200


@dataclass
class DashboardConfig:
    record_store: RecordStoreConfig
    blob_store: BlobStoreConfig
    message_bus: MessageBusConfig
    placement: PlacementPolicyConfig
    rebalance: RebalancePolicyConfig
    observability: ObservabilityConfig

    @staticmethod
    def default() -> "DashboardConfig":
        return DashboardConfig(
            record_store=RecordStoreConfig(),
            blob_store=BlobStoreConfig(),
            message_bus=MessageBusConfig(),
            placement=PlacementPolicyConfig(),
            rebalance=RebalancePolicyConfig(),
            observability=ObservabilityConfig(),
        )

    @staticmethod
    def from_env() -> "DashboardConfig":
        cfg = DashboardConfig.default()
        state_path = os.environ.get("DFS_DASHBOARD_STATE_PATH")
        if state_path:
            cfg.record_store.state_path = state_path
        blob_dir = os.environ.get("DFS_DASHBOARD_BLOB_DIR")
        if blob_dir:
            cfg.blob_store.base_path = blob_dir
        log_level = os.environ.get("DFS_DASHBOARD_LOG_LEVEL")
        if log_level:
            cfg.observability.log_level = log_level.upper()
        return cfg
