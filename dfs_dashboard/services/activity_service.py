"""Notification feed built from domain events."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional

from ..messaging import InMemoryBus, MessageEnvelope
from ..models import Notification
from ..telemetry import TelemetryCollector

_TITLES = {
    "nodes.created": "Node created",
    "nodes.status": "Node updated",
    "nodes.deleted": "Node deleted",
    "files.uploaded": "File uploaded",
    "files.deleted": "File deleted",
    "replicas.created": "Replica created",
    "replicas.deleted": "Replica deleted",
    "rebalance.planned": "Rebalance planned",
    "rebalance.applied": "Rebalance applied",
}


@dataclass
class ActivityService:
    bus: InMemoryBus
    telemetry: TelemetryCollector
    topics: List[str]
    max_entries: int = 200
    notifications: Optional[Deque[Notification]] = field(default=None)

    def __post_init__(self) -> None:
        if self.notifications is None:
            self.notifications = deque(maxlen=self.max_entries)
        for topic in self.topics:
            self.bus.subscribe(topic, self._handle_event)

    def recent(self, limit: int = 25) -> List[Notification]:
        if limit <= 0:
            return []
        return list(self.notifications)[-limit:][::-1]

    def _handle_event(self, envelope: MessageEnvelope) -> None:
        payload = envelope.payload
        notification = Notification(
            title=_TITLES.get(envelope.topic, envelope.topic),
            description=str(payload.get("description", "")),
            variant=str(payload.get("variant", "default")),
            topic=envelope.topic,
            timestamp=envelope.published_at,
        )
        self.notifications.append(notification)
        self.telemetry.emit_event(
            "activity",
            notification.description,
            {"topic": envelope.topic, **{key: str(value) for key, value in payload.items()}},
        )
