"""Persistence contract for imported events and two small implementations."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from eventcrawler.blobstore import resolve_blob_root
from eventcrawler.models import EventStatus, ImportedEventRecord

__all__ = [
    "DEFAULT_SINK_FILENAME",
    "InMemoryEventSink",
    "JsonFileEventSink",
    "PersistenceSink",
    "SINK_PATH_ENV",
]

logger = logging.getLogger(__name__)

DEFAULT_SINK_FILENAME = "events.json"
SINK_PATH_ENV = "EVENTCRAWLER_SINK_PATH"


@runtime_checkable
class PersistenceSink(Protocol):
    """Storage used by the orchestrator and the status repair pass."""

    def find_existing(
        self, external_id: Optional[str], external_url: Optional[str]
    ) -> Optional[ImportedEventRecord]:
        """Return a stored record sharing either the external id or the external URL."""

    def insert(self, record: ImportedEventRecord) -> None:
        ...

    def find_by_status(self, status: EventStatus) -> List[ImportedEventRecord]:
        ...

    def update_status(self, record_id: str, status: EventStatus) -> bool:
        ...


def _matches(record: ImportedEventRecord, external_id: Optional[str], external_url: Optional[str]) -> bool:
    if external_id and record.external_id == external_id:
        return True
    return bool(external_url and record.external_url == external_url)


class InMemoryEventSink:
    """Dictionary-backed sink, handy for tests and dry runs."""

    def __init__(self, records: List[ImportedEventRecord] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, ImportedEventRecord] = {record.record_id: record for record in records or []}

    @property
    def records(self) -> List[ImportedEventRecord]:
        with self._lock:
            return list(self._records.values())

    def find_existing(self, external_id, external_url):
        with self._lock:
            for record in self._records.values():
                if _matches(record, external_id, external_url):
                    return record
        return None

    def insert(self, record: ImportedEventRecord) -> None:
        with self._lock:
            self._records[record.record_id] = record

    def find_by_status(self, status: EventStatus) -> List[ImportedEventRecord]:
        with self._lock:
            return [record for record in self._records.values() if record.event_status == status]

    def update_status(self, record_id: str, status: EventStatus) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return False
            record.event_status = status
            return True


class JsonFileEventSink:
    """Keep every imported record in a single JSON document on disk."""

    def __init__(self, path: Path | str | None = None) -> None:
        if path is None:
            override = os.environ.get(SINK_PATH_ENV)
            path = Path(override) if override else resolve_blob_root() / DEFAULT_SINK_FILENAME
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> List[ImportedEventRecord]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in event store: {self.path}") from exc

        records: List[ImportedEventRecord] = []
        for entry in data.get("events", []) if isinstance(data, dict) else []:
            try:
                records.append(ImportedEventRecord.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping invalid stored record in %s: %s", self.path, exc)
        return records

    def _save(self, records: List[ImportedEventRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"events": [record.model_dump(mode="json") for record in records]}
        self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def find_existing(self, external_id, external_url):
        with self._lock:
            for record in self._load():
                if _matches(record, external_id, external_url):
                    return record
        return None

    def insert(self, record: ImportedEventRecord) -> None:
        with self._lock:
            records = self._load()
            records.append(record)
            self._save(records)

    def find_by_status(self, status: EventStatus) -> List[ImportedEventRecord]:
        with self._lock:
            return [record for record in self._load() if record.event_status == status]

    def update_status(self, record_id: str, status: EventStatus) -> bool:
        with self._lock:
            records = self._load()
            for record in records:
                if record.record_id == record_id:
                    record.event_status = status
                    self._save(records)
                    return True
        return False
