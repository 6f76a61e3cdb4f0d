"""Orchestrates node, file and replica operations on top of the core policies."""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from typing import Awaitable, Iterable, List, Optional, Tuple, TypeVar

from ..errors import (
    BlobStoreError,
    DashboardError,
    DuplicateReplica,
    FileNotFound,
    FileUnavailable,
    InvalidRequest,
    NodeNotEmpty,
    NodeNotFound,
    RecordStoreError,
    ReferenceConstraintError,
)
from ..messaging import InMemoryBus, MessageEnvelope
from ..models import (
    NODE_ONLINE,
    NODE_STATUSES,
    DashboardStats,
    DeletionReport,
    File,
    Node,
    PlacementFailure,
    RebalanceOutcome,
    RebalanceReport,
    Replica,
    SessionContext,
    StatusTransition,
    UploadResult,
)
from ..storage.blob_store import DiskBlobStore
from ..storage.record_store import InMemoryRecordStore
from .availability import AvailabilityOracle
from .base import BaseService
from .capacity_ledger import CapacityLedger
from .lifecycle_guard import NodeLifecycleGuard
from .placement_policy import PlacementPolicy
from .rebalance_planner import RebalancePlanner

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StorageService(BaseService):
    record_store: InMemoryRecordStore
    blob_store: DiskBlobStore
    bus: InMemoryBus
    ledger: CapacityLedger
    placement: PlacementPolicy
    availability: AvailabilityOracle
    lifecycle: NodeLifecycleGuard
    planner: RebalancePlanner

    # Nodes -----------------------------------------------------------------

    async def list_nodes(self, ctx: SessionContext) -> List[Node]:
        return await self._call_store("list nodes", self.record_store.get_nodes(ctx.user_id))

    async def create_node(
        self,
        ctx: SessionContext,
        name: str,
        capacity_total: int,
        *,
        status: str = NODE_ONLINE,
    ) -> Node:
        name = (name or "").strip()
        if not name:
            raise InvalidRequest("Node name is required")
        if isinstance(capacity_total, bool) or not isinstance(capacity_total, int) or capacity_total < 1:
            raise InvalidRequest(f"Node capacity must be a whole number of at least 1, got {capacity_total!r}")
        if status not in NODE_STATUSES:
            raise InvalidRequest(f"Unknown node status {status!r}")
        node = Node(
            id=str(uuid.uuid4()),
            name=name,
            capacity_total=capacity_total,
            owner_id=ctx.user_id,
            status=status,
        )
        node = await self._call_store(f"create node '{name}'", self.record_store.create_node(node))
        self._publish(
            "nodes.created",
            node_id=node.id,
            description=f"Node '{node.name}' added with {node.capacity_total} units of storage",
        )
        return node

    async def set_node_status(self, ctx: SessionContext, node_id: str, status: str) -> StatusTransition:
        node = await self._owned_node(ctx, node_id)
        files = await self.list_files(ctx)
        transition = self.lifecycle.plan_transition(node, status, files)
        if not transition.changed:
            return transition
        await self._call_store(
            f"set status of node '{node.name}'",
            self.record_store.update_node_status(node.id, status),
        )
        if transition.warning:
            logger.warning("%s: %s", transition.warning, ", ".join(transition.affected_file_ids))
        description = f"Node '{node.name}' is now {status}"
        if transition.warning:
            description = f"{description}. {transition.warning}"
        self._publish(
            "nodes.status",
            node_id=node.id,
            description=description,
            variant="destructive" if transition.warning else "default",
        )
        return transition

    async def delete_node(self, ctx: SessionContext, node_id: str) -> None:
        node = await self._owned_node(ctx, node_id)
        replicas = await self._call_store(
            f"list replicas on node '{node.name}'",
            self.record_store.get_replicas_by_node(node.id),
        )
        self.lifecycle.check_deletable(node, len(replicas))
        try:
            await self._call_store(f"delete node '{node.name}'", self.record_store.delete_node(node.id))
        except ReferenceConstraintError as exc:
            remaining = await self.record_store.get_replicas_by_node(node.id)
            raise NodeNotEmpty(node.id, len(remaining), node.name) from exc
        self._publish("nodes.deleted", node_id=node.id, description=f"Node '{node.name}' has been removed")

    # Files -----------------------------------------------------------------

    async def list_files(self, ctx: SessionContext) -> List[File]:
        return await self._call_store("list files", self.record_store.get_files(ctx.user_id))

    async def get_file(self, ctx: SessionContext, file_id: str) -> File:
        return await self._owned_file(ctx, file_id)

    def size_in_units(self, byte_count: int) -> int:
        unit = max(1, self.config.placement.storage_unit_bytes)
        return max(1, math.ceil(byte_count / unit))

    async def upload_file(
        self,
        ctx: SessionContext,
        name: str,
        data: bytes,
        target_node_ids: Iterable[str],
    ) -> UploadResult:
        """Store ``data`` once in the blob store and replicate it onto the target nodes.

        The whole target set is validated before anything is written. Nodes
        that fail after validation are reported on the result; replicas that
        did succeed are kept.
        """
        if not name:
            raise InvalidRequest("File name is required")
        size = self.size_in_units(len(data))
        nodes = {node.id: node for node in await self.list_nodes(ctx)}
        targets = self.placement.validate(size, target_node_ids, nodes)

        blob_path = await asyncio.to_thread(self.blob_store.put, data, name)
        record = File(id=str(uuid.uuid4()), name=name, size=size, owner_id=ctx.user_id, blob_path=blob_path)
        try:
            record = await self._call_store(f"record file '{name}'", self.record_store.create_file(record))
        except RecordStoreError as exc:
            warning = await self._discard_blob(blob_path)
            if warning:
                exc.warnings.append(warning)
            raise

        result = UploadResult(file=record)

        async def place(node: Node) -> None:
            try:
                replica = await self._place_replica(record, node)
            except DashboardError as exc:
                logger.warning("Replica of '%s' on node %s failed: %s", name, node.id, exc.message)
                result.failures.append(PlacementFailure(node_id=node.id, reason=exc.message))
                result.warnings.extend(exc.warnings)
            else:
                result.replicas.append(replica)

        await asyncio.gather(*(place(node) for node in targets))
        result.file = await self._call_store(f"reload file '{name}'", self.record_store.get_file(record.id))

        self.emit_metric("files.uploaded", 1)
        if result.failures:
            description = (
                f"File \"{name}\" stored on {len(result.replicas)} of {len(targets)} nodes; "
                f"failed: {', '.join(nodes[failure.node_id].name for failure in result.failures)}"
            )
        else:
            description = f"File \"{name}\" has been stored across {len(result.replicas)} nodes"
        self._publish(
            "files.uploaded",
            file_id=record.id,
            description=description,
            variant="destructive" if result.failures else "default",
        )
        return result

    async def add_replica(self, ctx: SessionContext, file_id: str, node_id: str) -> Replica:
        file = await self._owned_file(ctx, file_id)
        if node_id in file.node_ids():
            raise DuplicateReplica(file.id, node_id)
        nodes = {node.id: node for node in await self.list_nodes(ctx)}
        (node,) = self.placement.validate(file.size, [node_id], nodes)
        replica = await self._place_replica(file, node)
        self._publish(
            "replicas.created",
            file_id=file.id,
            node_id=node.id,
            description=f"Replica of \"{file.name}\" created on node '{node.name}'",
        )
        return replica

    async def delete_replica(self, ctx: SessionContext, replica_id: str) -> DeletionReport:
        replica = await self._call_store("look up replica", self.record_store.get_replica(replica_id))
        file = await self._owned_file(ctx, replica.file_id)
        report = DeletionReport(resource_id=replica.id)
        await self._remove_replica(file, replica, report)
        node_label = replica.node.name if replica.node else replica.node_id
        self._publish(
            "replicas.deleted",
            file_id=file.id,
            node_id=replica.node_id,
            description=f"Replica of \"{file.name}\" removed from node '{node_label}'",
        )
        return report

    async def delete_file(self, ctx: SessionContext, file_id: str) -> DeletionReport:
        """Delete every replica (releasing its capacity), then the record, then the blob."""
        file = await self._owned_file(ctx, file_id)
        report = DeletionReport(resource_id=file.id)
        for replica in file.replicas:
            await self._remove_replica(file, replica, report)
        cascaded = await self._call_store(f"delete file '{file.name}'", self.record_store.delete_file(file.id))
        for replica in cascaded:
            if replica.node is not None:
                await self._release(replica.node, file.size, report)
        try:
            await asyncio.to_thread(self.blob_store.delete, file.blob_path)
        except BlobStoreError as exc:
            logger.error("Blob for file %s was left behind: %s", file.id, exc.message)
            report.warnings.append(f"Contents of \"{file.name}\" could not be removed: {exc.message}")
        self._publish("files.deleted", file_id=file.id, description=f"File \"{file.name}\" has been deleted")
        return report

    async def open_file(self, ctx: SessionContext, file_id: str) -> Tuple[File, bytes]:
        """Return the file and its contents if a replica is online right now.

        Availability is re-evaluated from a fresh read on every call.
        """
        file = await self._owned_file(ctx, file_id)
        if not self.availability.is_accessible(file):
            self.emit_metric("files.access_denied", 1, file_id=file.id)
            raise FileUnavailable(file.id, file.name)
        data = await asyncio.to_thread(self.blob_store.get, file.blob_path)
        if data is None:
            raise BlobStoreError(f"Contents of file \"{file.name}\" are missing from the blob store")
        return file, data

    # Rebalancing -----------------------------------------------------------

    async def plan_rebalance(self, ctx: SessionContext) -> RebalanceReport:
        nodes = await self.list_nodes(ctx)
        files = await self.list_files(ctx)
        report = self.planner.plan(files, nodes)
        self._publish(
            "rebalance.planned",
            description=f"{len(report.moves)} replica move(s) proposed",
        )
        return report

    async def apply_rebalance(self, ctx: SessionContext, report: RebalanceReport) -> RebalanceOutcome:
        """Apply planned moves as add-then-delete so no file loses a replica along the way."""
        outcome = RebalanceOutcome()
        for move in report.moves:
            try:
                await self.add_replica(ctx, move.file_id, move.destination_node_id)
            except DashboardError as exc:
                outcome.failed.append(
                    PlacementFailure(node_id=move.destination_node_id, reason=f"{move.file_name}: {exc.message}")
                )
                outcome.warnings.extend(exc.warnings)
                continue
            file = await self._owned_file(ctx, move.file_id)
            source = next((r for r in file.replicas if r.node_id == move.source_node_id), None)
            if source is None:
                outcome.warnings.append(
                    f"\"{move.file_name}\" no longer has a replica on node {move.source_node_id}; kept the new copy"
                )
            else:
                deletion = DeletionReport(resource_id=source.id)
                try:
                    await self._remove_replica(file, source, deletion)
                except DashboardError as exc:
                    outcome.warnings.append(
                        f"\"{move.file_name}\" was copied but its old replica could not be removed: {exc.message}"
                    )
                outcome.warnings.extend(deletion.warnings)
            outcome.applied.append(move)
        self._publish(
            "rebalance.applied",
            description=f"{len(outcome.applied)} of {len(report.moves)} replica move(s) applied",
            variant="destructive" if outcome.failed else "default",
        )
        return outcome

    # Dashboard -------------------------------------------------------------

    async def summarize(self, ctx: SessionContext) -> DashboardStats:
        nodes = await self.list_nodes(ctx)
        files = await self.list_files(ctx)
        return DashboardStats(
            node_count=len(nodes),
            online_node_count=sum(1 for node in nodes if node.is_online),
            capacity_total=sum(node.capacity_total for node in nodes),
            capacity_used=sum(node.capacity_used for node in nodes),
            file_count=len(files),
            replica_count=sum(file.replication_factor for file in files),
            unavailable_file_count=sum(1 for file in files if not self.availability.is_accessible(file)),
        )

    async def collect_orphan_blobs(self) -> List[str]:
        """Remove blobs no file record points at, e.g. left behind by a failed delete."""
        files = await self._call_store("list files", self.record_store.get_files())
        removed = await asyncio.to_thread(self.blob_store.cleanup_orphans, [file.blob_path for file in files])
        if removed:
            logger.info("Removed %d orphan blob(s)", len(removed))
            self.emit_metric("blobs.orphans_removed", len(removed))
        return removed

    # Helpers ---------------------------------------------------------------

    async def _place_replica(self, file: File, node: Node) -> Replica:
        await self.ledger.reserve(node, file.size)
        try:
            return await self._call_store(
                f"record replica of \"{file.name}\" on node '{node.name}'",
                self.record_store.create_replica(file.id, node.id),
            )
        except DashboardError as exc:
            try:
                await self.ledger.release(node, file.size)
            except DashboardError as release_exc:
                logger.exception("Could not release %s units reserved on node %s", file.size, node.id)
                exc.warnings.append(
                    f"{file.size} units reserved on node '{node.name}' could not be released: {release_exc.message}"
                )
            raise

    async def _remove_replica(self, file: File, replica: Replica, report: DeletionReport) -> None:
        removed = await self._call_store("delete replica", self.record_store.delete_replica(replica.id))
        if removed.node is None:
            report.warnings.append(f"Node {replica.node_id} no longer exists; no storage to release")
            return
        await self._release(removed.node, file.size, report)

    async def _release(self, node: Node, amount: int, report: DeletionReport) -> None:
        try:
            await self.ledger.release(node, amount)
        except DashboardError as exc:
            logger.exception("Could not release %s units on node %s", amount, node.id)
            report.warnings.append(f"Storage on node '{node.name}' was not released: {exc.message}")
            return
        report.released[node.id] = report.released.get(node.id, 0) + amount

    async def _discard_blob(self, blob_path: str) -> Optional[str]:
        try:
            await asyncio.to_thread(self.blob_store.delete, blob_path)
        except BlobStoreError as exc:
            logger.exception("Could not discard blob %s", blob_path)
            return f"Uploaded contents could not be discarded: {exc.message}"
        return None

    async def _owned_node(self, ctx: SessionContext, node_id: str) -> Node:
        node = await self._call_store("look up node", self.record_store.get_node(node_id))
        if node.owner_id != ctx.user_id:
            raise NodeNotFound(node_id)
        return node

    async def _owned_file(self, ctx: SessionContext, file_id: str) -> File:
        file = await self._call_store("look up file", self.record_store.get_file(file_id))
        if file.owner_id != ctx.user_id:
            raise FileNotFound(file_id)
        return file

    async def _call_store(self, action: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except DashboardError:
            raise
        except Exception as exc:
            raise RecordStoreError(f"Record store failed to {action}: {exc}") from exc

    def _publish(self, topic: str, *, description: str, variant: str = "default", **payload: str) -> None:
        self.bus.publish(
            MessageEnvelope(
                topic=topic,
                payload={"description": description, "variant": variant, **payload},
            )
        )
