"""Domain event bus connecting the storage service to its listeners."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, DefaultDict, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[["MessageEnvelope"], None]


@dataclass
class MessageEnvelope:
    topic: str
    payload: Dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryBus:
    """Synchronous pub/sub bus; handlers run inline on publish.

    Events are published after a mutation has been committed, so a failing
    handler is logged and skipped instead of failing the caller.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def publish(self, envelope: MessageEnvelope) -> int:
        delivered = 0
        for handler in list(self._subscribers[envelope.topic]):
            try:
                handler(envelope)
            except Exception:
                logger.exception("Handler %r failed for topic %s", handler, envelope.topic)
                continue
            delivered += 1
        return delivered

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)


def build_bus(backend: str = "in-memory") -> InMemoryBus:
    if backend != "in-memory":
        raise NotImplementedError(f"Unsupported message bus backend: {backend}")
    return InMemoryBus()
