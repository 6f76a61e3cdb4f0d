"""Common plumbing for dashboard services."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import DashboardConfig
from ..telemetry import TelemetryCollector


@dataclass
class BaseService:
    config: DashboardConfig
    telemetry: TelemetryCollector

    def emit_metric(self, name: str, value: float, **labels: str) -> None:
        # Every sample is tagged with the emitting service.
        self.telemetry.emit_metric(name, value, {"service": type(self).__name__, **labels})
