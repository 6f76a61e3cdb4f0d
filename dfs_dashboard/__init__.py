"""Control plane for a simulated distributed file storage dashboard."""

from .config import DashboardConfig  # noqa: F401
from .runtime import DashboardRuntime  # noqa: F401
