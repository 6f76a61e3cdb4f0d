"""Advisory planner that evens out utilisation across online nodes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..errors import InsufficientNodes, NothingToBalance
from ..models import File, Node, RebalanceReport, ReplicaMove
from .base import BaseService


@dataclass
class RebalancePlanner(BaseService):

    def plan(self, files: Iterable[File], nodes: Iterable[Node]) -> RebalanceReport:
        """Propose replica moves that flatten ``capacity_used / capacity_total`` across online nodes.

        A move relocates one replica from a fuller node to an emptier one that
        does not already hold the file, so replica counts never change.
        Nothing is mutated; callers apply the moves through the ordinary
        replica operations.
        """
        online = [node for node in nodes if node.is_online]
        if len(online) < 2:
            raise InsufficientNodes(len(online))
        replicated = sorted((file for file in files if file.replicas), key=lambda file: file.id)
        if not replicated:
            raise NothingToBalance()

        policy = self.config.rebalance
        capacity = {node.id: node.capacity_total for node in online}
        used = {node.id: node.capacity_used for node in online}
        holdings = {file.id: set(file.node_ids()) for file in replicated}
        vacated: Set[Tuple[str, str]] = set()

        report = RebalanceReport(utilization_before=self._ratios(used, capacity))
        while len(report.moves) < policy.max_moves:
            move = self._next_move(replicated, used, capacity, holdings, vacated, policy.tolerance)
            if move is None:
                break
            used[move.source_node_id] -= move.size
            used[move.destination_node_id] += move.size
            holdings[move.file_id].discard(move.source_node_id)
            holdings[move.file_id].add(move.destination_node_id)
            vacated.add((move.file_id, move.source_node_id))
            report.moves.append(move)

        report.utilization_after = self._ratios(used, capacity)
        self.emit_metric("rebalance.proposed_moves", len(report.moves))
        return report

    def _next_move(
        self,
        files: List[File],
        used: Dict[str, int],
        capacity: Dict[str, int],
        holdings: Dict[str, Set[str]],
        vacated: Set[Tuple[str, str]],
        tolerance: float,
    ) -> Optional[ReplicaMove]:
        ratios = self._ratios(used, capacity)
        ranked = sorted(ratios, key=lambda node_id: (ratios[node_id], node_id))
        for source in reversed(ranked):
            for destination in ranked:
                gap = ratios[source] - ratios[destination]
                if gap <= tolerance:
                    break
                best: Optional[File] = None
                best_gap = gap
                free = capacity[destination] - used[destination]
                for file in files:
                    held = holdings[file.id]
                    if source not in held or destination in held:
                        continue
                    if (file.id, destination) in vacated or file.size > free:
                        continue
                    new_gap = abs(
                        (used[source] - file.size) / capacity[source]
                        - (used[destination] + file.size) / capacity[destination]
                    )
                    if new_gap < best_gap:
                        best, best_gap = file, new_gap
                if best is not None:
                    return ReplicaMove(
                        file_id=best.id,
                        file_name=best.name,
                        size=best.size,
                        source_node_id=source,
                        destination_node_id=destination,
                    )
        return None

    @staticmethod
    def _ratios(used: Dict[str, int], capacity: Dict[str, int]) -> Dict[str, float]:
        return {node_id: used[node_id] / capacity[node_id] for node_id in used}
