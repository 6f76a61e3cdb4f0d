"""Record store holding nodes, files and replicas.

Reads return detached snapshots: mutating a returned object never changes
the stored row. Files come back with their replicas joined, and every
replica carries a snapshot of its hosting node.
"""

from __future__ import annotations

import logging
import pickle
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config import RecordStoreConfig
from ..errors import (
    DuplicateReplica,
    FileNotFound,
    InsufficientCapacity,
    InvalidRequest,
    NodeNotFound,
    RecordStoreError,
    ReferenceConstraintError,
    ReplicaNotFound,
)
from ..models import NODE_STATUSES, File, Node, Replica

logger = logging.getLogger(__name__)


class InMemoryRecordStore:
    """Dictionary-backed store with optional pickle snapshots on disk.

    None of the coroutines await between reading and writing a row, so each
    call is atomic with respect to other tasks on the event loop.
    """

    def __init__(self, state_path: Optional[str] = None) -> None:
        self._nodes: Dict[str, Node] = {}
        self._files: Dict[str, File] = {}
        self._replicas: Dict[str, Replica] = {}
        self._state_file: Optional[Path] = None
        if state_path:
            self._state_file = Path(state_path).expanduser()
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            self._load_state()

    # Nodes -----------------------------------------------------------------

    async def get_nodes(self, owner_id: Optional[str] = None) -> List[Node]:
        nodes = [node for node in self._nodes.values() if owner_id is None or node.owner_id == owner_id]
        nodes.sort(key=lambda node: node.created_at)
        return [replace(node) for node in nodes]

    async def get_node(self, node_id: str) -> Node:
        return replace(self._node_row(node_id))

    async def create_node(self, node: Node) -> Node:
        if node.id in self._nodes:
            raise RecordStoreError(f"Node {node.id} already exists")
        self._nodes[node.id] = replace(node)
        self._commit(lambda: self._nodes.pop(node.id, None))
        return replace(node)

    async def update_node_status(self, node_id: str, status: str) -> Node:
        if status not in NODE_STATUSES:
            raise InvalidRequest(f"Unknown node status {status!r}")
        row = self._node_row(node_id)
        previous = row.status
        row.status = status
        self._commit(lambda: setattr(row, "status", previous))
        return replace(row)

    async def adjust_node_storage(self, node_id: str, delta: int) -> Node:
        """Atomically add ``delta`` to a node's used capacity.

        Increments beyond the node's total are rejected; decrements clamp at
        zero.
        """
        row = self._node_row(node_id)
        updated = row.capacity_used + delta
        if delta > 0 and updated > row.capacity_total:
            raise InsufficientCapacity(
                node_id,
                node_name=row.name,
                requested=delta,
                available=row.capacity_free,
            )
        previous = row.capacity_used
        row.capacity_used = max(0, updated)
        self._commit(lambda: setattr(row, "capacity_used", previous))
        return replace(row)

    async def delete_node(self, node_id: str) -> None:
        row = self._node_row(node_id)
        referenced = sum(1 for replica in self._replicas.values() if replica.node_id == node_id)
        if referenced:
            raise ReferenceConstraintError(f"Node {node_id} is still referenced by {referenced} replica(s)")
        del self._nodes[node_id]
        self._commit(lambda: self._nodes.update({node_id: row}))

    # Files -----------------------------------------------------------------

    async def get_files(self, owner_id: Optional[str] = None) -> List[File]:
        files = [entry for entry in self._files.values() if owner_id is None or entry.owner_id == owner_id]
        files.sort(key=lambda entry: entry.created_at)
        return [self._join_file(entry) for entry in files]

    async def get_file(self, file_id: str) -> File:
        entry = self._files.get(file_id)
        if entry is None:
            raise FileNotFound(file_id)
        return self._join_file(entry)

    async def create_file(self, file: File) -> File:
        if file.id in self._files:
            raise RecordStoreError(f"File {file.id} already exists")
        self._files[file.id] = replace(file, replicas=[])
        self._commit(lambda: self._files.pop(file.id, None))
        return self._join_file(self._files[file.id])

    async def delete_file(self, file_id: str) -> List[Replica]:
        """Remove a file and cascade to its replicas, returning the removed replicas."""
        entry = self._files.get(file_id)
        if entry is None:
            raise FileNotFound(file_id)
        cascaded = [replica for replica in self._replicas.values() if replica.file_id == file_id]
        for replica in cascaded:
            del self._replicas[replica.id]
        del self._files[file_id]

        def restore() -> None:
            self._files[file_id] = entry
            self._replicas.update((replica.id, replica) for replica in cascaded)

        self._commit(restore)
        return [self._join_replica(replica) for replica in cascaded]

    # Replicas --------------------------------------------------------------

    async def create_replica(self, file_id: str, node_id: str) -> Replica:
        if file_id not in self._files:
            raise FileNotFound(file_id)
        self._node_row(node_id)
        if any(r.file_id == file_id and r.node_id == node_id for r in self._replicas.values()):
            raise DuplicateReplica(file_id, node_id)
        replica = Replica(id=str(uuid.uuid4()), file_id=file_id, node_id=node_id)
        self._replicas[replica.id] = replica
        self._commit(lambda: self._replicas.pop(replica.id, None))
        return self._join_replica(replica)

    async def get_replica(self, replica_id: str) -> Replica:
        replica = self._replicas.get(replica_id)
        if replica is None:
            raise ReplicaNotFound(replica_id)
        return self._join_replica(replica)

    async def get_replicas_by_node(self, node_id: str) -> List[Replica]:
        return [self._join_replica(r) for r in self._replicas.values() if r.node_id == node_id]

    async def delete_replica(self, replica_id: str) -> Replica:
        replica = self._replicas.pop(replica_id, None)
        if replica is None:
            raise ReplicaNotFound(replica_id)
        self._commit(lambda: self._replicas.update({replica_id: replica}))
        return self._join_replica(replica)

    # Helpers ---------------------------------------------------------------

    def _commit(self, undo: Callable[[], object]) -> None:
        """Persist the pending change, reverting it in memory if the snapshot cannot be written."""
        try:
            self._persist_state()
        except RecordStoreError:
            undo()
            raise

    def _node_row(self, node_id: str) -> Node:
        row = self._nodes.get(node_id)
        if row is None:
            raise NodeNotFound(node_id)
        return row

    def _join_replica(self, replica: Replica) -> Replica:
        node = self._nodes.get(replica.node_id)
        return replace(replica, node=replace(node) if node else None)

    def _join_file(self, entry: File) -> File:
        replicas = [self._join_replica(r) for r in self._replicas.values() if r.file_id == entry.id]
        replicas.sort(key=lambda r: r.created_at)
        return replace(entry, replicas=replicas)

    def _load_state(self) -> None:
        if not self._state_file or not self._state_file.exists():
            return
        try:
            with self._state_file.open("rb") as handle:
                snapshot = pickle.load(handle)
        except (OSError, EOFError, pickle.PickleError) as exc:
            logger.warning("Ignoring unreadable record store snapshot %s: %s", self._state_file, exc)
            return
        self._nodes = snapshot.get("nodes", self._nodes)
        self._files = snapshot.get("files", self._files)
        self._replicas = snapshot.get("replicas", self._replicas)

    def _persist_state(self) -> None:
        if not self._state_file:
            return
        payload = {
            "nodes": self._nodes,
            "files": self._files,
            "replicas": self._replicas,
        }
        temp_path = self._state_file.with_suffix(self._state_file.suffix + ".tmp")
        try:
            with temp_path.open("wb") as handle:
                pickle.dump(payload, handle)
            temp_path.replace(self._state_file)
        except OSError as exc:
            raise RecordStoreError(f"Unable to persist records to {self._state_file}: {exc}") from exc


def build_record_store(config: RecordStoreConfig) -> InMemoryRecordStore:
    if config.backend != "in-memory":
        raise NotImplementedError(f"Unsupported record store backend: {config.backend}")
    return InMemoryRecordStore(state_path=config.state_path)
