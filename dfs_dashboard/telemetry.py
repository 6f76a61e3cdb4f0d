"""In-process metrics and event collection for the dashboard services."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .config import ObservabilityConfig
from .models import ObservabilityEvent

logger = logging.getLogger(__name__)


@dataclass
class TelemetryCollector:
    """Keeps raw metric samples plus running totals per metric name.

    Samples are bounded by nothing but ``flush``; totals survive a flush so the
    dashboard can keep reporting lifetime counts.
    """

    config: ObservabilityConfig
    metrics: List[Dict[str, object]] = field(default_factory=list)
    events: List[ObservabilityEvent] = field(default_factory=list)
    totals: Counter = field(default_factory=Counter)

    def emit_metric(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        sample = {
            "name": name,
            "value": value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **(labels or {}),
        }
        self.metrics.append(sample)
        self.totals[name] += value
        logger.debug("metric %s=%s %s", name, value, labels or {})

    def emit_event(self, event_type: str, message: str, attributes: Optional[Dict[str, str]] = None) -> None:
        self.events.append(ObservabilityEvent(event_type=event_type, message=message, attributes=attributes))

    def metric_total(self, name: str) -> float:
        return float(self.totals.get(name, 0))

    def events_of(self, event_type: str) -> List[ObservabilityEvent]:
        return [event for event in self.events if event.event_type == event_type]

    def flush(self) -> int:
        """Drop buffered samples and events, returning how many samples were dropped."""
        dropped = len(self.metrics)
        self.metrics.clear()
        self.events.clear()
        return dropped
