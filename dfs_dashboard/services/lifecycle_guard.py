"""Node status transitions and deletion guard."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..errors import InvalidRequest, NodeNotEmpty
from ..models import NODE_OFFLINE, NODE_ONLINE, NODE_STATUSES, File, Node, StatusTransition
from .availability import AvailabilityOracle
from .base import BaseService


@dataclass
class NodeLifecycleGuard(BaseService):
    availability: AvailabilityOracle

    def plan_transition(self, node: Node, status: str, files: Iterable[File]) -> StatusTransition:
        """Describe what toggling ``node`` to ``status`` does to file availability.

        Taking a node offline is never blocked; the files it would strand are
        reported as a warning instead.
        """
        if status not in NODE_STATUSES:
            raise InvalidRequest(f"Unknown node status {status!r}; expected one of {', '.join(NODE_STATUSES)}")
        transition = StatusTransition(node_id=node.id, previous=node.status, current=status)
        if not transition.changed:
            return transition

        files = list(files)
        if status == NODE_OFFLINE:
            affected = self.availability.impact_of_taking_offline(node, files)
            transition.affected_file_ids = sorted(affected)
            if affected:
                transition.warning = (
                    f"Taking node '{node.name}' offline makes {len(affected)} file(s) unavailable"
                )
                self.emit_metric("lifecycle.files_stranded", len(affected), node_id=node.id)
        elif status == NODE_ONLINE:
            transition.restored_file_ids = sorted(self.availability.restored_by_bringing_online(node, files))
        return transition

    def check_deletable(self, node: Node, replica_count: int) -> None:
        if replica_count > 0:
            raise NodeNotEmpty(node.id, replica_count, node.name)
