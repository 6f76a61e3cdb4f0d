"""Data models shared across dashboard services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

NODE_ONLINE = "online"
NODE_OFFLINE = "offline"
NODE_STATUSES = (NODE_ONLINE, NODE_OFFLINE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionContext:
    """Identity of the acting user, passed explicitly into every service call."""

    user_id: str


@dataclass
class Node:
    id: str
    name: str
    capacity_total: int
    owner_id: str
    capacity_used: int = 0
    status: str = NODE_ONLINE
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_online(self) -> bool:
        return self.status == NODE_ONLINE

    @property
    def capacity_free(self) -> int:
        return self.capacity_total - self.capacity_used

    @property
    def utilization(self) -> float:
        return self.capacity_used / self.capacity_total if self.capacity_total else 0.0


@dataclass
class Replica:
    id: str
    file_id: str
    node_id: str
    created_at: datetime = field(default_factory=_utcnow)
    # Joined snapshot of the hosting node; None when the node row is gone.
    node: Optional[Node] = None


@dataclass
class File:
    id: str
    name: str
    size: int
    owner_id: str
    blob_path: str
    created_at: datetime = field(default_factory=_utcnow)
    replicas: List[Replica] = field(default_factory=list)

    @property
    def replication_factor(self) -> int:
        return len(self.replicas)

    def node_ids(self) -> List[str]:
        return [replica.node_id for replica in self.replicas]


@dataclass
class ReplicaHealth:
    online: int
    offline: int

    @property
    def total(self) -> int:
        return self.online + self.offline


@dataclass
class StatusTransition:
    node_id: str
    previous: str
    current: str
    affected_file_ids: List[str] = field(default_factory=list)
    restored_file_ids: List[str] = field(default_factory=list)
    warning: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.previous != self.current


@dataclass
class ReplicaMove:
    file_id: str
    file_name: str
    size: int
    source_node_id: str
    destination_node_id: str


@dataclass
class RebalanceReport:
    moves: List[ReplicaMove] = field(default_factory=list)
    utilization_before: Dict[str, float] = field(default_factory=dict)
    utilization_after: Dict[str, float] = field(default_factory=dict)

    def moves_by_file(self) -> Dict[str, List[ReplicaMove]]:
        grouped: Dict[str, List[ReplicaMove]] = {}
        for move in self.moves:
            grouped.setdefault(move.file_id, []).append(move)
        return grouped


@dataclass
class PlacementFailure:
    node_id: str
    reason: str


@dataclass
class UploadResult:
    file: File
    replicas: List[Replica] = field(default_factory=list)
    failures: List[PlacementFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


@dataclass
class DeletionReport:
    resource_id: str
    released: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


@dataclass
class RebalanceOutcome:
    applied: List[ReplicaMove] = field(default_factory=list)
    failed: List[PlacementFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class DashboardStats:
    node_count: int
    online_node_count: int
    capacity_total: int
    capacity_used: int
    file_count: int
    replica_count: int
    unavailable_file_count: int

    @property
    def average_replication_factor(self) -> float:
        return self.replica_count / self.file_count if self.file_count else 0.0


@dataclass
class ObservabilityEvent:
    event_type: str
    message: str
    attributes: Optional[dict] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class Notification:
    title: str
    description: str
    variant: str = "default"
    topic: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
