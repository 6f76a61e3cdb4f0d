"""Per-node storage accounting for replica creation and removal."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import DashboardError, InsufficientCapacity, InvalidRequest, RecordStoreError
from ..models import Node
from ..storage.record_store import InMemoryRecordStore
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class CapacityLedger(BaseService):
    record_store: InMemoryRecordStore

    async def reserve(self, node: Node, amount: int) -> Node:
        """Add ``amount`` to the node's used capacity, or raise ``InsufficientCapacity``.

        The snapshot check fails fast without touching the store; the store
        repeats the check inside its atomic update.
        """
        self._check_amount(amount)
        if node.capacity_used + amount > node.capacity_total:
            self.emit_metric("capacity.rejected", 1, node_id=node.id)
            raise InsufficientCapacity(
                node.id,
                node_name=node.name,
                requested=amount,
                available=node.capacity_free,
            )
        updated = await self._adjust(node, amount)
        self.emit_metric("capacity.reserved", amount, node_id=node.id)
        return updated

    async def release(self, node: Node, amount: int) -> Node:
        self._check_amount(amount)
        updated = await self._adjust(node, -amount)
        if node.capacity_used < amount:
            logger.warning(
                "Ledger inconsistency on node %s: released %s units with only %s recorded as used",
                node.id,
                amount,
                node.capacity_used,
            )
        self.emit_metric("capacity.released", amount, node_id=node.id)
        return updated

    async def _adjust(self, node: Node, delta: int) -> Node:
        try:
            return await self.record_store.adjust_node_storage(node.id, delta)
        except DashboardError:
            raise
        except Exception as exc:
            raise RecordStoreError(f"Unable to update storage used on node '{node.name}': {exc}") from exc

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidRequest(f"Capacity amount must be a positive integer, got {amount!r}")
