"""FastAPI gateway backing the storage dashboard."""

from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..config import DashboardConfig
from ..errors import (
    BlobStoreError,
    DashboardError,
    DuplicateReplica,
    FileUnavailable,
    InsufficientCapacity,
    NodeNotEmpty,
    NodeOffline,
    NotFoundError,
    RebalanceError,
    RecordStoreError,
)
from ..models import NODE_ONLINE, RebalanceReport, ReplicaMove, SessionContext
from ..runtime import DashboardRuntime

runtime = DashboardRuntime.bootstrap(DashboardConfig.from_env())
logger = logging.getLogger(__name__)

app = FastAPI(title="Storage Dashboard API", version="0.1.0")

_cors_origins = [origin.strip() for origin in os.environ.get("DFS_DASHBOARD_CORS_ORIGINS", "*").split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins or ["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def get_session_context(request: Request) -> SessionContext:
    return SessionContext(user_id=request.headers.get("x-user-id", "user-123"))


def _http_error(exc: DashboardError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, (InsufficientCapacity, NodeOffline, DuplicateReplica, NodeNotEmpty, FileUnavailable)):
        status_code = 409
    elif isinstance(exc, RebalanceError):
        status_code = 422
    elif isinstance(exc, (RecordStoreError, BlobStoreError)):
        logger.error("Collaborator failure: %s", exc.message)
        status_code = 503
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail=exc.message)


class NodeCreateRequest(BaseModel):
    name: str
    capacity_total: int = Field(ge=1)
    status: str = Field(default=NODE_ONLINE)


class NodeStatusRequest(BaseModel):
    status: str


class ReplicaCreateRequest(BaseModel):
    node_id: str


class ReplicaMoveModel(BaseModel):
    file_id: str
    file_name: str
    size: int
    source_node_id: str
    destination_node_id: str


class RebalanceApplyRequest(BaseModel):
    moves: Optional[list[ReplicaMoveModel]] = None


@app.get("/nodes")
async def list_nodes(ctx: SessionContext = Depends(get_session_context)):
    try:
        nodes = await runtime.storage_service.list_nodes(ctx)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return [_serialize_node(node) for node in nodes]


@app.post("/nodes")
async def create_node(payload: NodeCreateRequest, ctx: SessionContext = Depends(get_session_context)):
    try:
        node = await runtime.storage_service.create_node(
            ctx,
            payload.name,
            payload.capacity_total,
            status=payload.status,
        )
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return _serialize_node(node)


@app.post("/nodes/{node_id}:status")
async def set_node_status(
    node_id: str,
    payload: NodeStatusRequest,
    ctx: SessionContext = Depends(get_session_context),
):
    try:
        transition = await runtime.storage_service.set_node_status(ctx, node_id, payload.status)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return {
        "node_id": transition.node_id,
        "previous": transition.previous,
        "status": transition.current,
        "changed": transition.changed,
        "affected_file_ids": transition.affected_file_ids,
        "restored_file_ids": transition.restored_file_ids,
        "warning": transition.warning,
    }


@app.delete("/nodes/{node_id}")
async def delete_node(node_id: str, ctx: SessionContext = Depends(get_session_context)):
    try:
        await runtime.storage_service.delete_node(ctx, node_id)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return {"node_id": node_id, "removed": True}


@app.get("/files")
async def list_files(ctx: SessionContext = Depends(get_session_context)):
    try:
        files = await runtime.storage_service.list_files(ctx)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return [_serialize_file(entry) for entry in files]


@app.post("/files")
async def upload_file(
    node_ids: list[str] = Form([]),
    file: UploadFile = File(...),
    ctx: SessionContext = Depends(get_session_context),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="File name is required")
    try:
        data = await file.read()
    finally:
        await file.close()
    try:
        result = await runtime.storage_service.upload_file(ctx, file.filename, data, node_ids)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return {
        "file": _serialize_file(result.file),
        "complete": result.complete,
        "failures": [{"node_id": f.node_id, "reason": f.reason} for f in result.failures],
        "warnings": result.warnings,
    }


@app.get("/files/{file_id}/availability")
async def file_availability(file_id: str, ctx: SessionContext = Depends(get_session_context)):
    try:
        entry = await runtime.storage_service.get_file(ctx, file_id)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    health = runtime.availability.replica_health(entry)
    return {
        "file_id": entry.id,
        "accessible": runtime.availability.is_accessible(entry),
        "online_replicas": health.online,
        "offline_replicas": health.offline,
        "replication_factor": health.total,
    }


@app.get("/files/{file_id}/download")
async def download_file(file_id: str, ctx: SessionContext = Depends(get_session_context)):
    try:
        entry, data = await runtime.storage_service.open_file(ctx, file_id)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    headers = {"Content-Disposition": f"attachment; filename=\"{entry.name}\""}
    return Response(content=data, media_type="application/octet-stream", headers=headers)


@app.delete("/files/{file_id}")
async def delete_file(file_id: str, ctx: SessionContext = Depends(get_session_context)):
    try:
        report = await runtime.storage_service.delete_file(ctx, file_id)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return _serialize_deletion(report)


@app.post("/files/{file_id}/replicas")
async def add_replica(
    file_id: str,
    payload: ReplicaCreateRequest,
    ctx: SessionContext = Depends(get_session_context),
):
    try:
        replica = await runtime.storage_service.add_replica(ctx, file_id, payload.node_id)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return _serialize_replica(replica)


@app.delete("/replicas/{replica_id}")
async def delete_replica(replica_id: str, ctx: SessionContext = Depends(get_session_context)):
    try:
        report = await runtime.storage_service.delete_replica(ctx, replica_id)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return _serialize_deletion(report)


@app.post("/rebalance:plan")
async def plan_rebalance(ctx: SessionContext = Depends(get_session_context)):
    try:
        report = await runtime.storage_service.plan_rebalance(ctx)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return _serialize_rebalance(report)


@app.post("/rebalance:apply")
async def apply_rebalance(payload: RebalanceApplyRequest, ctx: SessionContext = Depends(get_session_context)):
    try:
        if payload.moves is None:
            report = await runtime.storage_service.plan_rebalance(ctx)
        else:
            report = RebalanceReport(moves=[ReplicaMove(**move.model_dump()) for move in payload.moves])
        outcome = await runtime.storage_service.apply_rebalance(ctx, report)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return {
        "applied": [_serialize_move(move) for move in outcome.applied],
        "failed": [{"node_id": f.node_id, "reason": f.reason} for f in outcome.failed],
        "warnings": outcome.warnings,
    }


@app.get("/stats")
async def dashboard_stats(ctx: SessionContext = Depends(get_session_context)):
    try:
        stats = await runtime.storage_service.summarize(ctx)
    except DashboardError as exc:
        raise _http_error(exc) from exc
    return {
        "node_count": stats.node_count,
        "online_node_count": stats.online_node_count,
        "capacity_total": stats.capacity_total,
        "capacity_used": stats.capacity_used,
        "file_count": stats.file_count,
        "replica_count": stats.replica_count,
        "average_replication_factor": round(stats.average_replication_factor, 2),
        "unavailable_file_count": stats.unavailable_file_count,
    }


@app.get("/activity")
async def recent_activity(limit: int = 25):
    return [
        {
            "title": notification.title,
            "description": notification.description,
            "variant": notification.variant,
            "topic": notification.topic,
            "timestamp": notification.timestamp.isoformat(),
        }
        for notification in runtime.activity_service.recent(limit)
    ]


def _serialize_node(node) -> dict:
    return {
        "id": node.id,
        "name": node.name,
        "capacity_total": node.capacity_total,
        "capacity_used": node.capacity_used,
        "capacity_free": node.capacity_free,
        "utilization": round(node.utilization, 4),
        "status": node.status,
        "owner_id": node.owner_id,
        "created_at": node.created_at.isoformat(),
    }


def _serialize_replica(replica) -> dict:
    return {
        "id": replica.id,
        "file_id": replica.file_id,
        "node_id": replica.node_id,
        "node_name": replica.node.name if replica.node else None,
        "node_status": replica.node.status if replica.node else None,
        "created_at": replica.created_at.isoformat(),
    }


def _serialize_file(entry) -> dict:
    return {
        "id": entry.id,
        "name": entry.name,
        "size": entry.size,
        "owner_id": entry.owner_id,
        "blob_path": entry.blob_path,
        "created_at": entry.created_at.isoformat(),
        "replication_factor": entry.replication_factor,
        "accessible": runtime.availability.is_accessible(entry),
        "replicas": [_serialize_replica(replica) for replica in entry.replicas],
    }


def _serialize_deletion(report) -> dict:
    return {
        "id": report.resource_id,
        "released": report.released,
        "warnings": report.warnings,
    }


def _serialize_move(move) -> dict:
    return {
        "file_id": move.file_id,
        "file_name": move.file_name,
        "size": move.size,
        "source_node_id": move.source_node_id,
        "destination_node_id": move.destination_node_id,
    }


def _serialize_rebalance(report) -> dict:
    return {
        "moves": [_serialize_move(move) for move in report.moves],
        "moves_by_file": {
            file_id: [_serialize_move(move) for move in moves]
            for file_id, moves in report.moves_by_file().items()
        },
        "utilization_before": report.utilization_before,
        "utilization_after": report.utilization_after,
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=runtime.config.observability.log_level,
        format="[%(asctime)s] %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("DFS_DASHBOARD_PORT", "8000")))
