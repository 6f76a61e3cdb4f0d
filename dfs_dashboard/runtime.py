"""Runtime wiring for the storage dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import DashboardConfig
from .messaging import InMemoryBus, build_bus
from .services.activity_service import ActivityService
from .services.availability import AvailabilityOracle
from .services.capacity_ledger import CapacityLedger
from .services.lifecycle_guard import NodeLifecycleGuard
from .services.placement_policy import PlacementPolicy
from .services.rebalance_planner import RebalancePlanner
from .services.storage_service import StorageService
from .storage.blob_store import DiskBlobStore
from .storage.record_store import InMemoryRecordStore, build_record_store
from .telemetry import TelemetryCollector


@dataclass
class DashboardRuntime:
    config: DashboardConfig
    bus: InMemoryBus
    telemetry: TelemetryCollector
    record_store: InMemoryRecordStore
    blob_store: DiskBlobStore
    capacity_ledger: CapacityLedger
    placement_policy: PlacementPolicy
    availability: AvailabilityOracle
    lifecycle_guard: NodeLifecycleGuard
    rebalance_planner: RebalancePlanner
    storage_service: StorageService
    activity_service: ActivityService

    @classmethod
    def bootstrap(cls, config: Optional[DashboardConfig] = None) -> "DashboardRuntime":
        cfg = config or DashboardConfig.default()
        bus = build_bus(cfg.message_bus.backend)
        telemetry = TelemetryCollector(cfg.observability)
        record_store = build_record_store(cfg.record_store)
        blob_store = DiskBlobStore(cfg.blob_store.base_path, cfg.blob_store.bucket)

        capacity_ledger = CapacityLedger(config=cfg, telemetry=telemetry, record_store=record_store)
        placement_policy = PlacementPolicy(config=cfg, telemetry=telemetry)
        availability = AvailabilityOracle(config=cfg, telemetry=telemetry)
        lifecycle_guard = NodeLifecycleGuard(config=cfg, telemetry=telemetry, availability=availability)
        rebalance_planner = RebalancePlanner(config=cfg, telemetry=telemetry)
        activity_service = ActivityService(
            bus=bus,
            telemetry=telemetry,
            topics=cfg.message_bus.topics,
            max_entries=cfg.observability.activity_feed_size,
        )
        storage_service = StorageService(
            config=cfg,
            telemetry=telemetry,
            record_store=record_store,
            blob_store=blob_store,
            bus=bus,
            ledger=capacity_ledger,
            placement=placement_policy,
            availability=availability,
            lifecycle=lifecycle_guard,
            planner=rebalance_planner,
        )

        return cls(
            config=cfg,
            bus=bus,
            telemetry=telemetry,
            record_store=record_store,
            blob_store=blob_store,
            capacity_ledger=capacity_ledger,
            placement_policy=placement_policy,
            availability=availability,
            lifecycle_guard=lifecycle_guard,
            rebalance_planner=rebalance_planner,
            storage_service=storage_service,
            activity_service=activity_service,
        )
