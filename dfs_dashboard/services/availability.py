"""Availability of files derived from the status of their replica nodes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Set

from ..models import File, Node, Replica, ReplicaHealth
from .base import BaseService


@dataclass
class AvailabilityOracle(BaseService):
    """Answers accessibility questions from the snapshots it is handed.

    Nothing is cached; callers re-query immediately before granting access.
    """

    def is_accessible(self, file: File, nodes: Optional[Mapping[str, Node]] = None) -> bool:
        return any(self._replica_online(replica, nodes) for replica in file.replicas)

    def replica_health(self, file: File, nodes: Optional[Mapping[str, Node]] = None) -> ReplicaHealth:
        online = sum(1 for replica in file.replicas if self._replica_online(replica, nodes))
        return ReplicaHealth(online=online, offline=len(file.replicas) - online)

    def impact_of_taking_offline(self, node: Node, files_on_node: Iterable[File]) -> Set[str]:
        """Ids of files that would be left without an online replica if ``node`` went offline.

        Each file is re-evaluated with ``node`` treated as offline, so files
        whose other replicas all sit on offline nodes (or that have no other
        replica) are reported.
        """
        return self._reachable_only_through(node, files_on_node)

    def restored_by_bringing_online(self, node: Node, files_on_node: Iterable[File]) -> Set[str]:
        """Ids of unavailable files that become readable once ``node`` is back online."""
        return self._reachable_only_through(node, files_on_node)

    def _reachable_only_through(self, node: Node, files: Iterable[File]) -> Set[str]:
        dependent: Set[str] = set()
        for file in files:
            if node.id not in file.node_ids():
                continue
            others = [replica for replica in file.replicas if replica.node_id != node.id]
            if not any(self._replica_online(replica) for replica in others):
                dependent.add(file.id)
        return dependent

    @staticmethod
    def _replica_online(replica: Replica, nodes: Optional[Mapping[str, Node]] = None) -> bool:
        node = nodes.get(replica.node_id) if nodes is not None else replica.node
        return node is not None and node.is_online
