"""Service layer entry points for the event crawler."""

from __future__ import annotations

from .orchestrator import CrawlOrchestrator  # noqa: F401
from .status_cleanup import EventStatusRepair  # noqa: F401

__all__ = ["CrawlOrchestrator", "EventStatusRepair"]
