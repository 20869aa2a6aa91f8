"""Periodic repair of stored event statuses as time passes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel

from eventcrawler.models import EventStatus, ImportedEventRecord
from eventcrawler.services.sink import PersistenceSink
from eventcrawler.timing import determine_status, utcnow

__all__ = ["EventStatusRepair", "StatusRepairSummary", "TransitionHooks"]

logger = logging.getLogger(__name__)


class StatusRepairSummary(BaseModel):
    upcoming_to_ongoing: int = 0
    ongoing_to_completed: int = 0
    upcoming_to_completed: int = 0
    total: int = 0


class TransitionHooks(Protocol):
    """Callbacks fired after a record changed status, e.g. to reschedule jobs."""

    def on_started(self, record: ImportedEventRecord) -> None:
        ...

    def on_completed(self, record: ImportedEventRecord) -> None:
        ...


class _NoHooks:
    def on_started(self, record: ImportedEventRecord) -> None:
        pass

    def on_completed(self, record: ImportedEventRecord) -> None:
        pass


class EventStatusRepair:
    """Move UPCOMING and ONGOING records forward once their times have passed."""

    def __init__(self, sink: PersistenceSink, hooks: TransitionHooks | None = None) -> None:
        self.sink = sink
        self.hooks = hooks or _NoHooks()

    def run(self, now: datetime | None = None) -> StatusRepairSummary:
        current = now or utcnow()
        summary = StatusRepairSummary()

        for record in self.sink.find_by_status(EventStatus.UPCOMING):
            if record.event_start_at > current:
                continue
            status = determine_status(record.event_start_at, record.event_end_at, current)
            if status == record.event_status or not self.sink.update_status(record.record_id, status):
                continue
            record.event_status = status
            if status == EventStatus.ONGOING:
                summary.upcoming_to_ongoing += 1
                self.hooks.on_started(record)
            else:
                summary.upcoming_to_completed += 1
                self.hooks.on_completed(record)
            logger.debug("Event %s: UPCOMING -> %s", record.record_id, status.value)

        for record in self.sink.find_by_status(EventStatus.ONGOING):
            if record.event_end_at >= current:
                continue
            status = determine_status(record.event_start_at, record.event_end_at, current)
            if status == record.event_status or not self.sink.update_status(record.record_id, status):
                continue
            record.event_status = status
            summary.ongoing_to_completed += 1
            self.hooks.on_completed(record)
            logger.debug("Event %s: ONGOING -> %s", record.record_id, status.value)

        summary.total = summary.upcoming_to_ongoing + summary.ongoing_to_completed + summary.upcoming_to_completed
        logger.info(
            "Status repair: %d UPCOMING->ONGOING, %d ONGOING->COMPLETED, %d UPCOMING->COMPLETED (total %d)",
            summary.upcoming_to_ongoing,
            summary.ongoing_to_completed,
            summary.upcoming_to_completed,
            summary.total,
        )
        return summary
