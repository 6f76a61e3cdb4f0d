"""Validation of replica targets before any capacity is reserved."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping

from ..errors import InsufficientCapacity, NodeNotFound, NodeOffline, NoNodesSelected
from ..models import Node
from .base import BaseService


@dataclass
class PlacementPolicy(BaseService):

    def validate(self, file_size: int, target_node_ids: Iterable[str], nodes: Mapping[str, Node]) -> List[Node]:
        """Check a whole batch of targets and return the matching nodes in request order.

        Rules run in order over the full batch: an empty selection, then any
        offline target, then any target without ``file_size`` free units.
        Nothing is mutated.
        """
        targets = list(dict.fromkeys(target_node_ids))
        if not targets:
            self.emit_metric("placement.rejected", 1, reason="no_nodes")
            raise NoNodesSelected()

        selected: List[Node] = []
        for node_id in targets:
            node = nodes.get(node_id)
            if node is None:
                raise NodeNotFound(node_id)
            selected.append(node)

        for node in selected:
            if not node.is_online:
                self.emit_metric("placement.rejected", 1, reason="offline", node_id=node.id)
                raise NodeOffline(node.id, node.name)

        for node in selected:
            if node.capacity_free < file_size:
                self.emit_metric("placement.rejected", 1, reason="capacity", node_id=node.id)
                raise InsufficientCapacity(
                    node.id,
                    node_name=node.name,
                    requested=file_size,
                    available=node.capacity_free,
                )
        return selected
