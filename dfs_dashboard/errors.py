"""Domain errors raised by the dashboard services.

Every error carries a human-readable message naming the node(s) or file
involved so the gateway can hand it to the user unchanged.
"""

from __future__ import annotations

from typing import List, Optional


class DashboardError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        # Secondary problems hit while compensating for this error.
        self.warnings: List[str] = []


def _label(node_id: str, node_name: Optional[str]) -> str:
    return f"'{node_name}' ({node_id})" if node_name else f"'{node_id}'"


class InvalidRequest(DashboardError, ValueError):
    pass


# Lookups -------------------------------------------------------------------


class NotFoundError(DashboardError):
    pass


class NodeNotFound(NotFoundError):
    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node {node_id} not found")
        self.node_id = node_id


class FileNotFound(NotFoundError):
    def __init__(self, file_id: str) -> None:
        super().__init__(f"File {file_id} not found")
        self.file_id = file_id


class ReplicaNotFound(NotFoundError):
    def __init__(self, replica_id: str) -> None:
        super().__init__(f"Replica {replica_id} not found")
        self.replica_id = replica_id


# Placement and capacity ----------------------------------------------------


class PlacementError(DashboardError):
    pass


class CapacityError(DashboardError):
    pass


class NoNodesSelected(PlacementError):
    def __init__(self) -> None:
        super().__init__("Select at least one node to store the file on")


class NodeOffline(PlacementError):
    def __init__(self, node_id: str, node_name: Optional[str] = None) -> None:
        super().__init__(f"Node {_label(node_id, node_name)} is offline and cannot receive replicas")
        self.node_id = node_id


class InsufficientCapacity(PlacementError, CapacityError):
    def __init__(
        self,
        node_id: str,
        *,
        node_name: Optional[str] = None,
        requested: Optional[int] = None,
        available: Optional[int] = None,
    ) -> None:
        detail = ""
        if requested is not None and available is not None:
            detail = f" ({available} available, {requested} required)"
        super().__init__(f"Node {_label(node_id, node_name)} does not have enough free storage{detail}")
        self.node_id = node_id
        self.requested = requested
        self.available = available


class DuplicateReplica(PlacementError):
    def __init__(self, file_id: str, node_id: str) -> None:
        super().__init__(f"Node '{node_id}' already holds a replica of file {file_id}")
        self.file_id = file_id
        self.node_id = node_id


# Lifecycle ------------------------------------------------------------------


class DeletionError(DashboardError):
    pass


class NodeNotEmpty(DeletionError):
    def __init__(self, node_id: str, replica_count: int, node_name: Optional[str] = None) -> None:
        super().__init__(
            f"Node {_label(node_id, node_name)} still holds {replica_count} replica(s); "
            "delete them before removing the node"
        )
        self.node_id = node_id
        self.replica_count = replica_count


class FileUnavailable(DashboardError):
    def __init__(self, file_id: str, file_name: Optional[str] = None) -> None:
        label = f"'{file_name}'" if file_name else file_id
        super().__init__(f"File {label} is unavailable; no replica is on an online node")
        self.file_id = file_id


# Rebalancing ----------------------------------------------------------------


class RebalanceError(DashboardError):
    pass


class InsufficientNodes(RebalanceError):
    def __init__(self, online_count: int) -> None:
        super().__init__(f"Rebalancing needs at least 2 online nodes; {online_count} online")
        self.online_count = online_count


class NothingToBalance(RebalanceError):
    def __init__(self) -> None:
        super().__init__("No file has any replica to rebalance")


# Collaborators --------------------------------------------------------------


class RecordStoreError(DashboardError):
    pass


class ReferenceConstraintError(RecordStoreError):
    pass


class BlobStoreError(DashboardError):
    pass
